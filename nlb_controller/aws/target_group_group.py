from dataclasses import dataclass, field
from typing import Dict, Any
import logging

from ..annotations import ServiceAnnotations, action
from ..backend import Backend, build_listener_specs
from .cloud import RESOURCE_TYPE_TARGET_GROUP
from .target_group import TargetGroup, TargetGroupController

logger = logging.getLogger(__name__)


@dataclass
class TargetGroupGroup:
    """All target groups backing one Service, plus the tags that select them."""

    tg_by_backend: Dict[Backend, TargetGroup] = field(default_factory=dict)
    selector: Dict[str, str] = field(default_factory=dict)

    def arns(self):
        return {tg.arn for tg in self.tg_by_backend.values()}


class TargetGroupGroupController:
    def __init__(self, cloud, store, name_tag_gen, tg_controller: TargetGroupController = None):
        self.cloud = cloud
        self.store = store
        self.name_tag_gen = name_tag_gen
        self.tg_controller = tg_controller or TargetGroupController(cloud, store, name_tag_gen)

    def reconcile(self, ctx, service: Dict[str, Any], annos: ServiceAnnotations) -> TargetGroupGroup:
        """
        Converge one target group per Service backend.

        A failure on any backend fails the whole group; nothing is garbage
        collected here.
        """
        namespace = service["metadata"]["namespace"]
        name = service["metadata"]["name"]
        tg_by_backend = {}
        for spec in build_listener_specs(service, annos):
            backend = spec.backend
            if action.use(backend.service_port) or backend in tg_by_backend:
                continue
            tg_by_backend[backend] = self.tg_controller.reconcile(ctx, service, annos, backend)
        return TargetGroupGroup(
            tg_by_backend=tg_by_backend,
            selector=self.name_tag_gen.ownership_selector(namespace, name),
        )

    def gc(self, ctx, group: TargetGroupGroup) -> None:
        """
        Delete owned target groups that are not part of ``group``.

        Must run after listeners stopped referencing them.
        """
        in_use = group.arns()
        owned = self.cloud.get_resources_by_tags(ctx, group.selector, RESOURCE_TYPE_TARGET_GROUP)
        for arn in sorted(owned):
            if arn in in_use:
                continue
            logger.info(f"Deleting unused target group {arn}")
            self.cloud.delete_target_group_by_arn(ctx, arn)
            ctx.info("DELETE", f"target group {arn} deleted")

    def delete(self, ctx, namespace: str, name: str) -> None:
        """Delete every target group owned by the Service namespace/name."""
        self.gc(ctx, TargetGroupGroup(selector=self.name_tag_gen.ownership_selector(namespace, name)))
