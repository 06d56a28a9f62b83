from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import logging

from ..annotations import ServiceAnnotations
from ..backend import Backend, EndpointResolver, find_endpoint_port
from ..errors import DependencyMissingError, NotFoundError
from ..store import object_key
from .attributes import TargetGroupAttributesController
from .tags import TagsController, to_aws_tags

logger = logging.getLogger(__name__)

# Targets are registered with explicit ports, so the port given at creation is
# only a required placeholder. A backend's pods may listen on different ports.
TARGET_GROUP_DEFAULT_PORT = 1

HEALTH_CHECK_TRAFFIC_PORT = "traffic-port"


@dataclass
class TargetGroup:
    arn: str
    target_type: str
    targets: List[Dict[str, Any]] = field(default_factory=list)


def resolve_health_check_port(service: Dict[str, Any], port: str, target_type: str,
                              endpoints: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve the health check port annotation into the value sent to AWS.

    Args:
        service: the Service being reconciled
        port: annotation value, a number, "traffic-port" or a named service port
        target_type: "instance" or "ip"
        endpoints: Endpoints of the Service, used to resolve a named target port

    Returns:
        str: numeric ports and "traffic-port" unchanged; for a named service port
        the node port (instance targets) or the numeric target port (ip targets)

    Raises:
        DependencyMissingError: If the named port does not exist, has no node
            port for instance targets, or its named target port has no endpoint
    """
    if port.isdigit() or port == HEALTH_CHECK_TRAFFIC_PORT:
        return port

    service_port = None
    for candidate in (service.get("spec") or {}).get("ports") or []:
        if candidate.get("name") == port:
            service_port = candidate
            break
    if service_port is None:
        raise DependencyMissingError(f"failed to resolve healthcheck port {port} for service {object_key(service)}")

    if target_type == "instance":
        node_port = service_port.get("nodePort") or 0
        if not node_port:
            raise DependencyMissingError(
                f"failed to find valid NodePort for service {object_key(service)} with port {port}")
        return str(node_port)

    target_port = str(service_port.get("targetPort", service_port["port"]))
    if target_port.isdigit():
        return target_port
    # named container port, only the Endpoints know its number
    number = find_endpoint_port(endpoints, service_port)
    if number is None:
        raise DependencyMissingError(
            f"failed to resolve target port {target_port} of healthcheck port {port} for service {object_key(service)}")
    return str(number)


def backend_protocol(backend: Backend) -> str:
    """Target group protocol of a backend, shared with its listener."""
    return backend.protocol


def desired_health_check(annos: ServiceAnnotations, health_check_port: str) -> Dict[str, Any]:
    """The mutable health check settings of a target group, in AWS field names."""
    params = {
        "HealthCheckProtocol": annos.health_check.protocol,
        "HealthCheckPort": health_check_port,
        "HealthCheckIntervalSeconds": annos.health_check.interval_seconds,
        "HealthyThresholdCount": annos.target_group.healthy_threshold_count,
        "UnhealthyThresholdCount": annos.target_group.unhealthy_threshold_count,
    }
    if annos.health_check.uses_http:
        params["HealthCheckPath"] = annos.health_check.path
        params["Matcher"] = {"HttpCode": annos.target_group.success_codes}
    return params


def target_group_needs_modification(instance: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    """Compare a described target group with the desired health check settings."""
    for key, value in desired.items():
        if key == "Matcher":
            if (instance.get("Matcher") or {}).get("HttpCode") != value["HttpCode"]:
                logger.info(f"Matcher change detected: {instance.get('Matcher')} -> {value}")
                return True
        elif instance.get(key) != value:
            logger.info(f"{key} change detected: {instance.get(key)} -> {value}")
            return True
    return False


class TargetsController:
    """Converges the registered targets of a target group."""

    def __init__(self, cloud):
        self.cloud = cloud

    def reconcile(self, ctx, tg_arn: str, desired: List[Dict[str, Any]]) -> bool:
        current = {(t["Id"], t["Port"]) for t in self.cloud.describe_targets(ctx, tg_arn)}
        wanted = {(t["Id"], t["Port"]) for t in desired}

        additions = [{"Id": i, "Port": p} for i, p in sorted(wanted - current)]
        removals = [{"Id": i, "Port": p} for i, p in sorted(current - wanted)]
        if additions:
            logger.info(f"Registering targets to {tg_arn}: {additions}")
            self.cloud.register_targets(ctx, tg_arn, additions)
        if removals:
            logger.info(f"Deregistering targets from {tg_arn}: {removals}")
            self.cloud.deregister_targets(ctx, tg_arn, removals)
        return bool(additions or removals)


class TargetGroupController:
    """Manages the target group of one backend of a Service."""

    def __init__(self, cloud, store, name_tag_gen, endpoint_resolver: EndpointResolver = None):
        self.cloud = cloud
        self.store = store
        self.name_tag_gen = name_tag_gen
        self.tags_controller = TagsController(cloud)
        self.attrs_controller = TargetGroupAttributesController(cloud)
        self.targets_controller = TargetsController(cloud)
        self.endpoint_resolver = endpoint_resolver or EndpointResolver(store)

    def reconcile(self, ctx, service: Dict[str, Any], annos: ServiceAnnotations, backend: Backend) -> TargetGroup:
        """
        Ensure the target group for a backend exists and matches the annotations.

        Args:
            ctx: ReconcileContext
            service: the Service owning the backend
            annos: parsed annotations of the Service
            backend: the backend to converge

        Returns:
            TargetGroup: ARN, target type and the desired targets

        Raises:
            DependencyMissingError: If ports or endpoints cannot be resolved
            CloudAPIError: If an AWS call fails
        """
        namespace = service["metadata"]["namespace"]
        service_name = service["metadata"]["name"]
        target_type = annos.target_group.target_type
        protocol = backend_protocol(backend)

        endpoints = self._endpoints(service) if target_type == "ip" else None
        health_check_port = resolve_health_check_port(service, annos.health_check.port, target_type, endpoints)
        desired = desired_health_check(annos, health_check_port)
        tg_tags = self.build_tags(service, backend, annos)

        tg_name = self.name_tag_gen.name_tg(namespace, service_name, backend.service_name,
                                            backend.service_port, target_type, protocol)
        instance = self.cloud.get_target_group_by_name(ctx, tg_name)
        if instance is None:
            instance = self._create(ctx, tg_name, target_type, protocol, desired, tg_tags)
        elif target_group_needs_modification(instance, desired):
            tg_arn = instance["TargetGroupArn"]
            logger.info(f"Modifying target group {tg_name} ({tg_arn})")
            instance = self.cloud.modify_target_group(ctx, TargetGroupArn=tg_arn, **desired)
            ctx.info("MODIFY", f"target group {tg_name} modified")

        tg_arn = instance["TargetGroupArn"]
        self.tags_controller.reconcile(ctx, tg_arn, tg_tags)
        self.attrs_controller.reconcile(ctx, tg_arn, annos.target_group.attributes)

        targets = self.endpoint_resolver.resolve(service, backend, target_type)
        self.targets_controller.reconcile(ctx, tg_arn, targets)

        return TargetGroup(arn=tg_arn, target_type=target_type, targets=targets)

    def _endpoints(self, service):
        try:
            return self.store.get_service_endpoints(object_key(service))
        except NotFoundError:
            return None

    def _create(self, ctx, tg_name, target_type, protocol, desired, tg_tags):
        logger.info(f"Creating target group {tg_name}")
        instance = self.cloud.create_target_group(
            ctx,
            Name=tg_name,
            Protocol=protocol,
            Port=TARGET_GROUP_DEFAULT_PORT,
            VpcId=self.store.get_config().vpc_id,
            TargetType=target_type,
            Tags=to_aws_tags(tg_tags),
            **desired
        )
        ctx.info("CREATE", f"target group {tg_name} created, ARN: {instance['TargetGroupArn']}")
        return instance

    def build_tags(self, service: Dict[str, Any], backend: Backend, annos: ServiceAnnotations) -> Dict[str, str]:
        namespace = service["metadata"]["namespace"]
        tags = self.name_tag_gen.tag_tg_group(namespace, service["metadata"]["name"])
        tags.update(self.name_tag_gen.tag_tg(namespace, backend.service_name, backend.service_port))
        tags.update(annos.tags)
        return tags
