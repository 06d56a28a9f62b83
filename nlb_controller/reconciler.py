"""
Per-Service orchestration of the load balancer, target group and listener
controllers.

Reconciling a Service never relies on remembered state: the NLB and its
target groups are looked up by deterministic name and ownership tags on
every pass, so a reconcile after a restart converges the same way.
"""

import logging
from typing import Dict, Any, Optional

import kubernetes

from .annotations import is_valid_service
from .aws.listener import ListenerGroupController
from .aws.load_balancer import LoadBalancer, LoadBalancerController
from .aws.target_group_group import TargetGroupGroupController
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def split_key(key: str):
    namespace, _, name = key.rpartition("/")
    return namespace, name


def ingress_hostname(service: Dict[str, Any]) -> Optional[str]:
    ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    return ingress[0].get("hostname") if ingress else None


class Reconciler:
    def __init__(self, store, cloud, name_tag_gen, core_v1=None):
        self.store = store
        self.cloud = cloud
        self.name_tag_gen = name_tag_gen
        self.core_v1 = core_v1
        self.lb_controller = LoadBalancerController(cloud, store, name_tag_gen)
        self.tg_group_controller = TargetGroupGroupController(cloud, store, name_tag_gen)
        self.ls_group_controller = ListenerGroupController(cloud)

    def sync(self, ctx, key: str) -> Optional[LoadBalancer]:
        """
        Bring the cloud resources of the Service ``key`` in line with the store.

        Services that are gone, being deleted or outside our service class
        have their resources deleted. Others are reconciled and their status
        is updated with the NLB hostname.

        Args:
            ctx: ReconcileContext
            key: namespace/name of the Service

        Returns:
            LoadBalancer if the Service was reconciled, None if it was deleted
        """
        try:
            service = self.store.get_service(key)
        except NotFoundError:
            service = None

        service_class = self.store.get_config().service_class
        if (service is None
                or service["metadata"].get("deletionTimestamp")
                or not is_valid_service(service_class, service)):
            self.delete(ctx, key)
            return None

        ctx.body = service
        lb = self.reconcile(ctx, service)
        self.update_status(service, lb)
        return lb

    def reconcile(self, ctx, service: Dict[str, Any]) -> LoadBalancer:
        """
        Converge the NLB of one Service.

        Stages run in order and the first failure aborts the rest. Target
        groups are garbage collected only after listeners stopped pointing
        at them.

        Raises:
            ConfigurationError: If annotations or configuration are invalid
            DependencyMissingError: If a referenced object is missing
            CloudAPIError: If an AWS call fails
        """
        key = f"{service['metadata']['namespace']}/{service['metadata']['name']}"
        annos = self.store.get_service_annotations(key)

        instance = self.lb_controller.reconcile(ctx, service, annos)
        lb_arn = instance["LoadBalancerArn"]

        tg_group = self.tg_group_controller.reconcile(ctx, service, annos)
        self.ls_group_controller.reconcile(ctx, lb_arn, service, annos, tg_group)
        self.tg_group_controller.gc(ctx, tg_group)

        return LoadBalancer(arn=lb_arn, dns_name=instance.get("DNSName", ""))

    def delete(self, ctx, key: str) -> None:
        """Delete the NLB of ``key`` with its listeners and target groups. A missing NLB is not an error."""
        namespace, name = split_key(key)
        instance = self.lb_controller.find_instance(ctx, namespace, name)
        if instance is None:
            logger.debug(f"No LoadBalancer found for {key}, nothing to delete")
            return

        lb_arn = instance["LoadBalancerArn"]
        self.ls_group_controller.delete(ctx, lb_arn)
        self.tg_group_controller.delete(ctx, namespace, name)
        self.lb_controller.delete_instance(ctx, lb_arn)

    def update_status(self, service: Dict[str, Any], lb: LoadBalancer) -> None:
        """Publish the NLB hostname on the Service status. Failures are only logged."""
        if self.core_v1 is None or not lb.dns_name or ingress_hostname(service) == lb.dns_name:
            return
        name = service["metadata"]["name"]
        namespace = service["metadata"]["namespace"]
        body = {"status": {"loadBalancer": {"ingress": [{"hostname": lb.dns_name}]}}}
        try:
            self.core_v1.patch_namespaced_service_status(name=name, namespace=namespace, body=body)
            logger.info(f"Updated status of service {namespace}/{name} with hostname {lb.dns_name}")
        except kubernetes.client.rest.ApiException as e:
            logger.error(f"Failed to update status of service {namespace}/{name}: {str(e)}")
