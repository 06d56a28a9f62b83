from typing import Dict, List
import logging

logger = logging.getLogger(__name__)

# Tags with this prefix are managed by AWS and cannot be removed
AWS_RESERVED_PREFIX = "aws:"


def to_aws_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


def from_aws_tags(tags) -> Dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tags or []}


class TagsController:
    """Converges the tags of an ELBv2 resource to a desired set."""

    def __init__(self, cloud):
        self.cloud = cloud

    def reconcile(self, ctx, arn: str, desired: Dict[str, str]) -> bool:
        """
        Add or update missing tags and remove tags that are no longer desired.

        Args:
            ctx: ReconcileContext
            arn: ARN of the load balancer or target group
            desired: tags the resource should carry

        Returns:
            bool: True if changes were made, False otherwise
        """
        current = self.cloud.describe_tags(ctx, arn)
        modify = {k: v for k, v in desired.items() if current.get(k) != v}
        remove = [k for k in current if k not in desired and not k.startswith(AWS_RESERVED_PREFIX)]

        if modify:
            logger.info(f"Modifying tags of {arn}: {sorted(modify)}")
            self.cloud.add_tags(ctx, arn, modify)
        if remove:
            logger.info(f"Removing tags of {arn}: {sorted(remove)}")
            self.cloud.remove_tags(ctx, arn, remove)
        return bool(modify or remove)
