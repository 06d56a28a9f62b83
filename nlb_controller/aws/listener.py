from typing import Dict, Any, List
import logging

from ..annotations import ServiceAnnotations, action
from ..backend import Backend, ListenerSpec, build_listener_specs
from ..errors import DependencyMissingError
from .target_group_group import TargetGroupGroup

logger = logging.getLogger(__name__)

# Fields of a described action that take part in the comparison
ACTION_COMPARE_FIELDS = ("Type", "TargetGroupArn", "Order")


def build_actions(annos: ServiceAnnotations, backend: Backend, tg_group: TargetGroupGroup) -> List[Dict[str, Any]]:
    """
    Build the ordered default actions of a listener routing to ``backend``.

    Args:
        annos: parsed annotations of the Service
        backend: the backend the listener routes to
        tg_group: target groups reconciled for the Service

    Returns:
        List of actions with an explicit 1-based Order

    Raises:
        DependencyMissingError: If the action annotation or the target group is missing
        ConfigurationError: If the annotated action is invalid
    """
    if action.use(backend.service_port):
        actions = [annos.actions.get_action(backend.service_name)]
    else:
        target_group = tg_group.tg_by_backend.get(backend)
        if target_group is None:
            raise DependencyMissingError(
                f"unable to find target group for backend {backend.service_name}:{backend.service_port}")
        actions = [{"Type": "forward", "TargetGroupArn": target_group.arn}]

    for order, item in enumerate(actions, start=1):
        item["Order"] = order
    return actions


def normalize_actions(actions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce actions to their comparable fields, sorted by Order."""
    normalized = [
        {k: item[k] for k in ACTION_COMPARE_FIELDS if item.get(k) is not None}
        for item in actions or []
    ]
    return sorted(normalized, key=lambda a: a.get("Order", 0))


def listener_needs_modification(instance: Dict[str, Any], protocol: str, actions: List[Dict[str, Any]]) -> bool:
    if instance.get("Protocol") != protocol:
        logger.info(f"Listener protocol change detected: {instance.get('Protocol')} -> {protocol}")
        return True
    if normalize_actions(instance.get("DefaultActions")) != normalize_actions(actions):
        logger.info(f"Listener default actions change detected on port {instance.get('Port')}")
        return True
    return False


class ListenerGroupController:
    """Converges the listeners of a load balancer with the ports of its Service."""

    def __init__(self, cloud):
        self.cloud = cloud

    def reconcile(self, ctx, lb_arn: str, service: Dict[str, Any], annos: ServiceAnnotations,
                  tg_group: TargetGroupGroup) -> List[Dict[str, Any]]:
        """
        Create missing listeners, modify changed ones and delete listeners on
        ports the Service no longer declares.

        Actions for every port are built before any listener call, so an
        invalid action leaves existing listeners untouched.

        Returns:
            The listeners after convergence
        """
        specs = build_listener_specs(service, annos)
        desired = [(spec, build_actions(annos, spec.backend, tg_group)) for spec in specs]

        current = {listener["Port"]: listener for listener in self.cloud.describe_listeners(ctx, lb_arn)}
        listeners = []
        for spec, actions in desired:
            instance = current.pop(spec.port, None)
            if instance is None:
                listeners.append(self._create(ctx, lb_arn, spec, actions))
            elif listener_needs_modification(instance, spec.protocol, actions):
                listeners.append(self._modify(ctx, instance, spec, actions))
            else:
                listeners.append(instance)

        for port, instance in sorted(current.items()):
            logger.info(f"Deleting listener on port {port} ({instance['ListenerArn']})")
            self.cloud.delete_listener(ctx, instance["ListenerArn"])
            ctx.info("DELETE", f"listener on port {port} deleted")
        return listeners

    def _create(self, ctx, lb_arn: str, spec: ListenerSpec, actions):
        logger.info(f"Creating listener on port {spec.port}/{spec.protocol} for {lb_arn}")
        listener = self.cloud.create_listener(
            ctx,
            LoadBalancerArn=lb_arn,
            Port=spec.port,
            Protocol=spec.protocol,
            DefaultActions=actions,
        )
        ctx.info("CREATE", f"listener on port {spec.port} created, ARN: {listener['ListenerArn']}")
        return listener

    def _modify(self, ctx, instance, spec: ListenerSpec, actions):
        listener = self.cloud.modify_listener(
            ctx,
            ListenerArn=instance["ListenerArn"],
            Port=spec.port,
            Protocol=spec.protocol,
            DefaultActions=actions,
        )
        ctx.info("MODIFY", f"listener on port {spec.port} modified")
        return listener

    def delete(self, ctx, lb_arn: str) -> None:
        """Delete every listener of the load balancer."""
        for listener in self.cloud.describe_listeners(ctx, lb_arn):
            logger.info(f"Deleting listener {listener['ListenerArn']}")
            self.cloud.delete_listener(ctx, listener["ListenerArn"])
