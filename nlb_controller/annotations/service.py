from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import ConfigurationError
from .action import ActionConfig
from .parser import AnnotationParser

SCHEME_INTERNAL = "internal"
SCHEME_INTERNET_FACING = "internet-facing"
IP_ADDRESS_TYPE_IPV4 = "ipv4"
IP_ADDRESS_TYPE_DUALSTACK = "dualstack"

TARGET_TYPES = ("instance", "ip")
# TCP_UDP is derived from a TCP and a UDP port sharing a number
BACKEND_PROTOCOLS = ("TCP", "UDP")
HEALTH_CHECK_PROTOCOLS = ("TCP", "HTTP", "HTTPS")

DEFAULT_HEALTH_CHECK_PORT = "traffic-port"
DEFAULT_HEALTH_CHECK_PROTOCOL = "TCP"
DEFAULT_HEALTH_CHECK_PATH = "/"
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 30
DEFAULT_HEALTHY_THRESHOLD_COUNT = 3
DEFAULT_UNHEALTHY_THRESHOLD_COUNT = 3
DEFAULT_SUCCESS_CODES = "200-399"


@dataclass
class LoadBalancerAnnotations:
    scheme: str = SCHEME_INTERNAL
    ip_address_type: str = IP_ADDRESS_TYPE_IPV4
    subnets: List[str] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class TargetGroupAnnotations:
    target_type: str = "ip"
    backend_protocol: str = "TCP"
    healthy_threshold_count: int = DEFAULT_HEALTHY_THRESHOLD_COUNT
    unhealthy_threshold_count: int = DEFAULT_UNHEALTHY_THRESHOLD_COUNT
    success_codes: str = DEFAULT_SUCCESS_CODES
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class HealthCheckAnnotations:
    protocol: str = DEFAULT_HEALTH_CHECK_PROTOCOL
    port: str = DEFAULT_HEALTH_CHECK_PORT
    path: str = DEFAULT_HEALTH_CHECK_PATH
    interval_seconds: int = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS

    @property
    def uses_http(self) -> bool:
        return self.protocol in ("HTTP", "HTTPS")


@dataclass
class ServiceAnnotations:
    load_balancer: LoadBalancerAnnotations = field(default_factory=LoadBalancerAnnotations)
    target_group: TargetGroupAnnotations = field(default_factory=TargetGroupAnnotations)
    health_check: HealthCheckAnnotations = field(default_factory=HealthCheckAnnotations)
    tags: Dict[str, str] = field(default_factory=dict)
    actions: ActionConfig = field(default_factory=ActionConfig)


def _choice(name: str, value: Optional[str], default: str, allowed) -> str:
    if value is None:
        return default
    if value not in allowed:
        raise ConfigurationError(f"annotation {name} must be one of {', '.join(allowed)}, got `{value}`")
    return value


def parse_service_annotations(annotations: Dict[str, str], cfg) -> ServiceAnnotations:
    """
    Parse the annotations of one Service into ServiceAnnotations.

    Args:
        annotations: metadata.annotations of the Service
        cfg: controller Configuration (annotation prefix and defaults)

    Returns:
        ServiceAnnotations: typed configuration with defaults applied

    Raises:
        ConfigurationError: If an annotation holds an invalid value
    """
    p = AnnotationParser(cfg.annotation_prefix)
    annotations = annotations or {}

    load_balancer = LoadBalancerAnnotations(
        scheme=_choice("scheme", p.get_string("scheme", annotations), SCHEME_INTERNAL,
                       (SCHEME_INTERNAL, SCHEME_INTERNET_FACING)),
        ip_address_type=_choice("ip-address-type", p.get_string("ip-address-type", annotations),
                                IP_ADDRESS_TYPE_IPV4, (IP_ADDRESS_TYPE_IPV4, IP_ADDRESS_TYPE_DUALSTACK)),
        subnets=p.get_string_slice("subnets", annotations),
        attributes=p.get_key_values("load-balancer-attributes", annotations),
    )

    target_type = p.get_string("target-type", annotations)
    if target_type == "pod":
        target_type = "ip"
    healthy = p.get_int("healthy-threshold-count", annotations)
    unhealthy = p.get_int("unhealthy-threshold-count", annotations)
    target_group = TargetGroupAnnotations(
        target_type=_choice("target-type", target_type, cfg.default_target_type, TARGET_TYPES),
        backend_protocol=_choice("backend-protocol", p.get_string("backend-protocol", annotations),
                                 cfg.default_backend_protocol, BACKEND_PROTOCOLS),
        healthy_threshold_count=DEFAULT_HEALTHY_THRESHOLD_COUNT if healthy is None else healthy,
        unhealthy_threshold_count=DEFAULT_UNHEALTHY_THRESHOLD_COUNT if unhealthy is None else unhealthy,
        success_codes=p.get_string("success-codes", annotations) or DEFAULT_SUCCESS_CODES,
        attributes=p.get_key_values("target-group-attributes", annotations),
    )

    interval = p.get_int("healthcheck-interval-seconds", annotations)
    health_check = HealthCheckAnnotations(
        protocol=_choice("healthcheck-protocol", p.get_string("healthcheck-protocol", annotations),
                         DEFAULT_HEALTH_CHECK_PROTOCOL, HEALTH_CHECK_PROTOCOLS),
        port=p.get_string("healthcheck-port", annotations) or DEFAULT_HEALTH_CHECK_PORT,
        path=p.get_string("healthcheck-path", annotations) or DEFAULT_HEALTH_CHECK_PATH,
        interval_seconds=DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS if interval is None else interval,
    )

    return ServiceAnnotations(
        load_balancer=load_balancer,
        target_group=target_group,
        health_check=health_check,
        tags=p.get_key_values("tags", annotations),
        actions=ActionConfig.parse(p.get_string_group("actions", annotations)),
    )
