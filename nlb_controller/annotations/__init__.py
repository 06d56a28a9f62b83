from .action import USE_ACTION_ANNOTATION, ActionConfig
from .parser import AnnotationParser
from .service import (
    SCHEME_INTERNAL,
    SCHEME_INTERNET_FACING,
    HealthCheckAnnotations,
    LoadBalancerAnnotations,
    ServiceAnnotations,
    TargetGroupAnnotations,
    parse_service_annotations,
)

SERVICE_CLASS_ANNOTATION = "kubernetes.io/service.class"


def is_valid_service(service_class: str, service) -> bool:
    """True if the Service belongs to the given service class."""
    annotations = (service.get("metadata") or {}).get("annotations") or {}
    return annotations.get(SERVICE_CLASS_ANNOTATION) == service_class


__all__ = [
    "SCHEME_INTERNAL",
    "SCHEME_INTERNET_FACING",
    "SERVICE_CLASS_ANNOTATION",
    "USE_ACTION_ANNOTATION",
    "ActionConfig",
    "AnnotationParser",
    "HealthCheckAnnotations",
    "LoadBalancerAnnotations",
    "ServiceAnnotations",
    "TargetGroupAnnotations",
    "is_valid_service",
    "parse_service_annotations",
]
