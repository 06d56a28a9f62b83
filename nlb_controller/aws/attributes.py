from typing import Dict
import logging

logger = logging.getLogger(__name__)


def attributes_to_modify(current: Dict[str, str], desired: Dict[str, str]) -> Dict[str, str]:
    """Desired attributes whose current value differs. Unlisted attributes are left alone."""
    return {k: v for k, v in desired.items() if current.get(k) != v}


class LoadBalancerAttributesController:
    def __init__(self, cloud):
        self.cloud = cloud

    def reconcile(self, ctx, lb_arn: str, desired: Dict[str, str]) -> bool:
        if not desired:
            return False
        modify = attributes_to_modify(self.cloud.describe_load_balancer_attributes(ctx, lb_arn), desired)
        if not modify:
            return False
        logger.info(f"Modifying attributes of LoadBalancer {lb_arn}: {modify}")
        self.cloud.modify_load_balancer_attributes(ctx, lb_arn, modify)
        return True


class TargetGroupAttributesController:
    def __init__(self, cloud):
        self.cloud = cloud

    def reconcile(self, ctx, tg_arn: str, desired: Dict[str, str]) -> bool:
        if not desired:
            return False
        modify = attributes_to_modify(self.cloud.describe_target_group_attributes(ctx, tg_arn), desired)
        if not modify:
            return False
        logger.info(f"Modifying attributes of target group {tg_arn}: {modify}")
        self.cloud.modify_target_group_attributes(ctx, tg_arn, modify)
        return True
