"""
In-memory stand-in for Cloud, used by the reconcile tests.
It is not used by the controller itself.

It keeps load balancers, target groups, listeners, targets and tags in dicts
and records every mutating call in ``calls`` as (operation, arguments).
"""

import copy
import itertools
from typing import Any, Dict, Iterable, List, Optional

from ..errors import CloudAPIError
from .cloud import RESOURCE_TYPE_TARGET_GROUP
from .tags import from_aws_tags

ARN_PREFIX = "arn:aws:elasticloadbalancing:us-east-1:123456789012"

TARGET_GROUP_MUTABLE_FIELDS = (
    "HealthCheckProtocol", "HealthCheckPort", "HealthCheckPath", "HealthCheckIntervalSeconds",
    "HealthyThresholdCount", "UnhealthyThresholdCount", "Matcher",
)


class FakeCloud:
    def __init__(self, subnets: List[Dict[str, Any]] = None, cluster_subnet_tags: Dict[str, Dict[str, str]] = None):
        self._ids = itertools.count(1)
        self.load_balancers: Dict[str, Dict[str, Any]] = {}
        self.lb_attributes: Dict[str, Dict[str, str]] = {}
        self.target_groups: Dict[str, Dict[str, Any]] = {}
        self.tg_attributes: Dict[str, Dict[str, str]] = {}
        self.targets: Dict[str, List[Dict[str, Any]]] = {}
        self.listeners: Dict[str, Dict[str, Any]] = {}
        self.tags: Dict[str, Dict[str, str]] = {}
        # ec2 subnets as returned by DescribeSubnets
        self.subnets = subnets or []
        # subnet ARN -> tags, as returned by the tagging API
        self.cluster_subnet_tags = cluster_subnet_tags or {}
        self.calls = []

    def _record(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))

    def mutating_calls(self) -> List[str]:
        return [operation for operation, _ in self.calls]

    def reset_calls(self):
        self.calls = []

    # load balancers

    def get_load_balancer_by_name(self, ctx, name: str) -> Optional[Dict[str, Any]]:
        ctx.check()
        for lb in self.load_balancers.values():
            if lb["LoadBalancerName"] == name:
                return copy.deepcopy(lb)
        return None

    def create_load_balancer(self, ctx, **params) -> Dict[str, Any]:
        ctx.check()
        self._record("create_load_balancer", **params)
        n = next(self._ids)
        arn = f"{ARN_PREFIX}:loadbalancer/net/{params['Name']}/{n:016x}"
        lb = {
            "LoadBalancerArn": arn,
            "LoadBalancerName": params["Name"],
            "DNSName": f"{params['Name']}-{n}.elb.us-east-1.amazonaws.com",
            "Type": params.get("Type", "network"),
            "Scheme": params.get("Scheme", "internal"),
            "IpAddressType": params.get("IpAddressType", "ipv4"),
            "AvailabilityZones": [{"SubnetId": s} for s in params.get("Subnets") or []],
        }
        self.load_balancers[arn] = lb
        self.lb_attributes[arn] = {}
        self.tags[arn] = from_aws_tags(params.get("Tags"))
        return copy.deepcopy(lb)

    def delete_load_balancer_by_arn(self, ctx, arn: str) -> None:
        ctx.check()
        self._record("delete_load_balancer", arn=arn)
        self.load_balancers.pop(arn, None)
        self.tags.pop(arn, None)
        for listener_arn in [a for a, ls in self.listeners.items() if ls["LoadBalancerArn"] == arn]:
            del self.listeners[listener_arn]

    def set_ip_address_type(self, ctx, arn: str, ip_address_type: str) -> None:
        ctx.check()
        self._record("set_ip_address_type", arn=arn, ip_address_type=ip_address_type)
        self.load_balancers[arn]["IpAddressType"] = ip_address_type

    def set_subnets(self, ctx, arn: str, subnets: List[str]) -> None:
        ctx.check()
        self._record("set_subnets", arn=arn, subnets=list(subnets))
        self.load_balancers[arn]["AvailabilityZones"] = [{"SubnetId": s} for s in subnets]

    def describe_load_balancer_attributes(self, ctx, arn: str) -> Dict[str, str]:
        ctx.check()
        return dict(self.lb_attributes.get(arn, {}))

    def modify_load_balancer_attributes(self, ctx, arn: str, attributes: Dict[str, str]) -> None:
        ctx.check()
        self._record("modify_load_balancer_attributes", arn=arn, attributes=dict(attributes))
        self.lb_attributes.setdefault(arn, {}).update(attributes)

    # target groups

    def get_target_group_by_name(self, ctx, name: str) -> Optional[Dict[str, Any]]:
        ctx.check()
        for tg in self.target_groups.values():
            if tg["TargetGroupName"] == name:
                return copy.deepcopy(tg)
        return None

    def create_target_group(self, ctx, **params) -> Dict[str, Any]:
        ctx.check()
        self._record("create_target_group", **params)
        n = next(self._ids)
        arn = f"{ARN_PREFIX}:targetgroup/{params['Name']}/{n:016x}"
        tg = {k: v for k, v in params.items() if k != "Tags"}
        tg["TargetGroupArn"] = arn
        tg["TargetGroupName"] = params["Name"]
        self.target_groups[arn] = tg
        self.tg_attributes[arn] = {}
        self.targets[arn] = []
        self.tags[arn] = from_aws_tags(params.get("Tags"))
        return copy.deepcopy(tg)

    def modify_target_group(self, ctx, **params) -> Dict[str, Any]:
        ctx.check()
        self._record("modify_target_group", **params)
        tg = self.target_groups[params["TargetGroupArn"]]
        for key in TARGET_GROUP_MUTABLE_FIELDS:
            if key in params:
                tg[key] = params[key]
        return copy.deepcopy(tg)

    def delete_target_group_by_arn(self, ctx, arn: str) -> None:
        ctx.check()
        for listener in self.listeners.values():
            for action in listener.get("DefaultActions") or []:
                if action.get("TargetGroupArn") == arn:
                    raise CloudAPIError("delete_target_group", "ResourceInUse",
                                        f"Target group '{arn}' is currently in use by a listener or a rule")
        self._record("delete_target_group", arn=arn)
        self.target_groups.pop(arn, None)
        self.targets.pop(arn, None)
        self.tags.pop(arn, None)

    def describe_target_group_attributes(self, ctx, arn: str) -> Dict[str, str]:
        ctx.check()
        return dict(self.tg_attributes.get(arn, {}))

    def modify_target_group_attributes(self, ctx, arn: str, attributes: Dict[str, str]) -> None:
        ctx.check()
        self._record("modify_target_group_attributes", arn=arn, attributes=dict(attributes))
        self.tg_attributes.setdefault(arn, {}).update(attributes)

    # targets

    def describe_targets(self, ctx, tg_arn: str) -> List[Dict[str, Any]]:
        ctx.check()
        return copy.deepcopy(self.targets.get(tg_arn, []))

    def register_targets(self, ctx, tg_arn: str, targets: List[Dict[str, Any]]) -> None:
        ctx.check()
        self._record("register_targets", arn=tg_arn, targets=copy.deepcopy(targets))
        for target in targets:
            if target not in self.targets[tg_arn]:
                self.targets[tg_arn].append(dict(target))

    def deregister_targets(self, ctx, tg_arn: str, targets: List[Dict[str, Any]]) -> None:
        ctx.check()
        self._record("deregister_targets", arn=tg_arn, targets=copy.deepcopy(targets))
        self.targets[tg_arn] = [t for t in self.targets[tg_arn] if t not in targets]

    # tags

    def describe_tags(self, ctx, arn: str) -> Dict[str, str]:
        ctx.check()
        return dict(self.tags.get(arn, {}))

    def add_tags(self, ctx, arn: str, tags: Dict[str, str]) -> None:
        ctx.check()
        self._record("add_tags", arn=arn, tags=dict(tags))
        self.tags.setdefault(arn, {}).update(tags)

    def remove_tags(self, ctx, arn: str, keys: Iterable[str]) -> None:
        ctx.check()
        keys = sorted(keys)
        self._record("remove_tags", arn=arn, keys=keys)
        for key in keys:
            self.tags.get(arn, {}).pop(key, None)

    # listeners

    def _validate_listener(self, operation: str, params: Dict[str, Any], listener_arn: str = None) -> None:
        # ELBv2 rejects a second listener on a port and a forward to a target group of another protocol
        lb_arn = params.get("LoadBalancerArn") or self.listeners[listener_arn]["LoadBalancerArn"]
        for arn, listener in self.listeners.items():
            if arn != listener_arn and listener["LoadBalancerArn"] == lb_arn and listener["Port"] == params["Port"]:
                raise CloudAPIError(operation, "DuplicateListener", f"A listener already exists on port {params['Port']}")
        for action in params.get("DefaultActions") or []:
            tg = self.target_groups.get(action.get("TargetGroupArn"))
            if tg is not None and tg.get("Protocol") != params["Protocol"]:
                raise CloudAPIError(operation, "ValidationError",
                                    f"Listener protocol '{params['Protocol']}' must be compatible with "
                                    f"target group protocol '{tg.get('Protocol')}'")

    def describe_listeners(self, ctx, lb_arn: str) -> List[Dict[str, Any]]:
        ctx.check()
        return [copy.deepcopy(ls) for ls in self.listeners.values() if ls["LoadBalancerArn"] == lb_arn]

    def create_listener(self, ctx, **params) -> Dict[str, Any]:
        ctx.check()
        self._validate_listener("create_listener", params)
        self._record("create_listener", **params)
        n = next(self._ids)
        arn = f"{ARN_PREFIX}:listener/net/{n:016x}"
        listener = copy.deepcopy(params)
        listener["ListenerArn"] = arn
        self.listeners[arn] = listener
        return copy.deepcopy(listener)

    def modify_listener(self, ctx, **params) -> Dict[str, Any]:
        ctx.check()
        self._validate_listener("modify_listener", params, params["ListenerArn"])
        self._record("modify_listener", **params)
        listener = self.listeners[params["ListenerArn"]]
        listener.update(copy.deepcopy(params))
        return copy.deepcopy(listener)

    def delete_listener(self, ctx, listener_arn: str) -> None:
        ctx.check()
        self._record("delete_listener", arn=listener_arn)
        self.listeners.pop(listener_arn, None)

    # discovery

    def get_resources_by_tags(self, ctx, tags: Dict[str, str], resource_type: str) -> Dict[str, Dict[str, str]]:
        ctx.check()
        if resource_type != RESOURCE_TYPE_TARGET_GROUP:
            return {}
        return {
            arn: dict(self.tags.get(arn, {}))
            for arn in self.target_groups
            if all(self.tags.get(arn, {}).get(k) == v for k, v in tags.items())
        }

    def get_cluster_subnets(self, ctx, cluster_tag_key: str) -> Dict[str, Dict[str, str]]:
        ctx.check()
        return {
            arn: dict(tags) for arn, tags in self.cluster_subnet_tags.items()
            if tags.get(cluster_tag_key) in ("owned", "shared")
        }

    def get_subnets_by_name_or_id(self, ctx, names_or_ids: List[str]) -> List[Dict[str, Any]]:
        ctx.check()
        found = []
        for subnet in self.subnets:
            name = from_aws_tags(subnet.get("Tags")).get("Name")
            if subnet["SubnetId"] in names_or_ids or (name and name in names_or_ids):
                found.append(copy.deepcopy(subnet))
        return found
