"""
The AWS API surface used by the reconcilers.

Every method takes the ReconcileContext first and issues plain AWS calls
through call_aws_operation; lookups by name return None when the resource
does not exist.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..errors import CloudAPIError
from .client import call_aws_operation, get_ec2_client, get_elbv2_client, get_tagging_client
from .tags import from_aws_tags, to_aws_tags

logger = logging.getLogger(__name__)

RESOURCE_TYPE_TARGET_GROUP = "elasticloadbalancing:targetgroup"
RESOURCE_TYPE_SUBNET = "ec2:subnet"


class Cloud:
    def __init__(self, elbv2=None, ec2=None, tagging=None, region: str = None):
        self.elbv2 = elbv2 or get_elbv2_client(region)
        self.ec2 = ec2 or get_ec2_client(region)
        self.tagging = tagging or get_tagging_client(region)

    # load balancers

    def get_load_balancer_by_name(self, ctx, name: str) -> Optional[Dict[str, Any]]:
        try:
            response = call_aws_operation(ctx, self.elbv2.describe_load_balancers, Names=[name])
        except CloudAPIError as e:
            if e.code == "LoadBalancerNotFound":
                return None
            raise
        load_balancers = response.get("LoadBalancers") or []
        return load_balancers[0] if load_balancers else None

    def create_load_balancer(self, ctx, **params) -> Dict[str, Any]:
        return call_aws_operation(ctx, self.elbv2.create_load_balancer, **params)["LoadBalancers"][0]

    def delete_load_balancer_by_arn(self, ctx, arn: str) -> None:
        call_aws_operation(ctx, self.elbv2.delete_load_balancer, LoadBalancerArn=arn)

    def set_ip_address_type(self, ctx, arn: str, ip_address_type: str) -> None:
        call_aws_operation(ctx, self.elbv2.set_ip_address_type, LoadBalancerArn=arn, IpAddressType=ip_address_type)

    def set_subnets(self, ctx, arn: str, subnets: List[str]) -> None:
        call_aws_operation(ctx, self.elbv2.set_subnets, LoadBalancerArn=arn, Subnets=list(subnets))

    def describe_load_balancer_attributes(self, ctx, arn: str) -> Dict[str, str]:
        response = call_aws_operation(ctx, self.elbv2.describe_load_balancer_attributes, LoadBalancerArn=arn)
        return {attr["Key"]: attr["Value"] for attr in response.get("Attributes") or []}

    def modify_load_balancer_attributes(self, ctx, arn: str, attributes: Dict[str, str]) -> None:
        call_aws_operation(ctx, self.elbv2.modify_load_balancer_attributes, LoadBalancerArn=arn,
                           Attributes=[{"Key": k, "Value": v} for k, v in sorted(attributes.items())])

    # target groups

    def get_target_group_by_name(self, ctx, name: str) -> Optional[Dict[str, Any]]:
        try:
            response = call_aws_operation(ctx, self.elbv2.describe_target_groups, Names=[name])
        except CloudAPIError as e:
            if e.code == "TargetGroupNotFound":
                return None
            raise
        target_groups = response.get("TargetGroups") or []
        return target_groups[0] if target_groups else None

    def create_target_group(self, ctx, **params) -> Dict[str, Any]:
        return call_aws_operation(ctx, self.elbv2.create_target_group, **params)["TargetGroups"][0]

    def modify_target_group(self, ctx, **params) -> Dict[str, Any]:
        return call_aws_operation(ctx, self.elbv2.modify_target_group, **params)["TargetGroups"][0]

    def delete_target_group_by_arn(self, ctx, arn: str) -> None:
        call_aws_operation(ctx, self.elbv2.delete_target_group, TargetGroupArn=arn)

    def describe_target_group_attributes(self, ctx, arn: str) -> Dict[str, str]:
        response = call_aws_operation(ctx, self.elbv2.describe_target_group_attributes, TargetGroupArn=arn)
        return {attr["Key"]: attr["Value"] for attr in response.get("Attributes") or []}

    def modify_target_group_attributes(self, ctx, arn: str, attributes: Dict[str, str]) -> None:
        call_aws_operation(ctx, self.elbv2.modify_target_group_attributes, TargetGroupArn=arn,
                           Attributes=[{"Key": k, "Value": v} for k, v in sorted(attributes.items())])

    # targets

    def describe_targets(self, ctx, tg_arn: str) -> List[Dict[str, Any]]:
        response = call_aws_operation(ctx, self.elbv2.describe_target_health, TargetGroupArn=tg_arn)
        return [
            {"Id": desc["Target"]["Id"], "Port": desc["Target"]["Port"]}
            for desc in response.get("TargetHealthDescriptions") or []
        ]

    def register_targets(self, ctx, tg_arn: str, targets: List[Dict[str, Any]]) -> None:
        call_aws_operation(ctx, self.elbv2.register_targets, TargetGroupArn=tg_arn, Targets=targets)

    def deregister_targets(self, ctx, tg_arn: str, targets: List[Dict[str, Any]]) -> None:
        call_aws_operation(ctx, self.elbv2.deregister_targets, TargetGroupArn=tg_arn, Targets=targets)

    # tags

    def describe_tags(self, ctx, arn: str) -> Dict[str, str]:
        response = call_aws_operation(ctx, self.elbv2.describe_tags, ResourceArns=[arn])
        for desc in response.get("TagDescriptions") or []:
            if desc.get("ResourceArn") == arn:
                return from_aws_tags(desc.get("Tags"))
        return {}

    def add_tags(self, ctx, arn: str, tags: Dict[str, str]) -> None:
        call_aws_operation(ctx, self.elbv2.add_tags, ResourceArns=[arn], Tags=to_aws_tags(tags))

    def remove_tags(self, ctx, arn: str, keys: Iterable[str]) -> None:
        call_aws_operation(ctx, self.elbv2.remove_tags, ResourceArns=[arn], TagKeys=sorted(keys))

    # listeners

    def describe_listeners(self, ctx, lb_arn: str) -> List[Dict[str, Any]]:
        listeners = []
        marker = None
        while True:
            params = {"LoadBalancerArn": lb_arn}
            if marker:
                params["Marker"] = marker
            response = call_aws_operation(ctx, self.elbv2.describe_listeners, **params)
            listeners.extend(response.get("Listeners") or [])
            marker = response.get("NextMarker")
            if not marker:
                return listeners

    def create_listener(self, ctx, **params) -> Dict[str, Any]:
        return call_aws_operation(ctx, self.elbv2.create_listener, **params)["Listeners"][0]

    def modify_listener(self, ctx, **params) -> Dict[str, Any]:
        return call_aws_operation(ctx, self.elbv2.modify_listener, **params)["Listeners"][0]

    def delete_listener(self, ctx, listener_arn: str) -> None:
        call_aws_operation(ctx, self.elbv2.delete_listener, ListenerArn=listener_arn)

    # discovery

    def get_resources_by_tags(self, ctx, tags: Dict[str, str], resource_type: str) -> Dict[str, Dict[str, str]]:
        """
        ARNs of resources of one type carrying every given tag.

        Returns:
            Dict mapping ARN to the resource's tags
        """
        tag_filters = [{"Key": k, "Values": [v]} for k, v in sorted(tags.items())]
        return self._get_resources(ctx, tag_filters, resource_type)

    def get_cluster_subnets(self, ctx, cluster_tag_key: str) -> Dict[str, Dict[str, str]]:
        """Subnets tagged as owned by or shared with the cluster, ARN -> tags."""
        tag_filters = [{"Key": cluster_tag_key, "Values": ["owned", "shared"]}]
        return self._get_resources(ctx, tag_filters, RESOURCE_TYPE_SUBNET)

    def _get_resources(self, ctx, tag_filters, resource_type):
        resources = {}
        token = None
        while True:
            params = {"TagFilters": tag_filters, "ResourceTypeFilters": [resource_type]}
            if token:
                params["PaginationToken"] = token
            response = call_aws_operation(ctx, self.tagging.get_resources, **params)
            for mapping in response.get("ResourceTagMappingList") or []:
                resources[mapping["ResourceARN"]] = from_aws_tags(mapping.get("Tags"))
            token = response.get("PaginationToken")
            if not token:
                return resources

    def get_subnets_by_name_or_id(self, ctx, names_or_ids: List[str]) -> List[Dict[str, Any]]:
        """Subnets whose ID or Name tag matches one of the given values."""
        ids = [n for n in names_or_ids if n.startswith("subnet-")]
        names = [n for n in names_or_ids if not n.startswith("subnet-")]
        subnets = []
        if ids:
            response = call_aws_operation(ctx, self.ec2.describe_subnets,
                                          Filters=[{"Name": "subnet-id", "Values": ids}])
            subnets.extend(response.get("Subnets") or [])
        if names:
            response = call_aws_operation(ctx, self.ec2.describe_subnets,
                                          Filters=[{"Name": "tag:Name", "Values": names}])
            subnets.extend(response.get("Subnets") or [])
        return subnets
