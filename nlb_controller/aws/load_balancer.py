from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import logging

from ..annotations import SCHEME_INTERNAL, SCHEME_INTERNET_FACING, ServiceAnnotations
from ..errors import ConfigurationError
from ..generator import cluster_tag_key
from .attributes import LoadBalancerAttributesController
from .tags import TagsController, to_aws_tags

logger = logging.getLogger(__name__)

LOAD_BALANCER_TYPE_NETWORK = "network"

TAG_NAME_SUBNET_INTERNAL_ELB = "kubernetes.io/role/internal-elb"
TAG_NAME_SUBNET_PUBLIC_ELB = "kubernetes.io/role/elb"

MIN_CLUSTER_SUBNETS = 2


@dataclass
class LoadBalancerConfig:
    name: str
    tags: Dict[str, str] = field(default_factory=dict)
    type: str = LOAD_BALANCER_TYPE_NETWORK
    scheme: str = SCHEME_INTERNAL
    ip_address_type: Optional[str] = None
    subnets: List[str] = field(default_factory=list)


@dataclass
class LoadBalancer:
    arn: str
    dns_name: str


def instance_subnets(instance: Dict[str, Any]) -> List[str]:
    """Subnet IDs a described load balancer is attached to."""
    return sorted(az["SubnetId"] for az in instance.get("AvailabilityZones") or [] if az.get("SubnetId"))


def subnet_id_from_arn(arn: str) -> str:
    return arn.split("/")[-1]


class LoadBalancerController:
    """
    Owns the NLB instance of a Service: builds its desired configuration,
    validates it and drives the live load balancer towards it.
    """

    def __init__(self, cloud, store, name_tag_gen):
        self.cloud = cloud
        self.store = store
        self.name_tag_gen = name_tag_gen
        self.tags_controller = TagsController(cloud)
        self.attrs_controller = LoadBalancerAttributesController(cloud)

    def reconcile(self, ctx, service: Dict[str, Any], annos: ServiceAnnotations) -> Dict[str, Any]:
        """
        Build, validate and ensure the load balancer, then converge its attributes.

        Returns:
            Dict: the live load balancer as described by AWS

        Raises:
            ConfigurationError: If the configuration is invalid or not allowed
            CloudAPIError: If an AWS call fails
        """
        lb_config = self.build_config(ctx, service, annos)
        self.validate_config(service, lb_config)
        instance = self.ensure_instance(ctx, lb_config)
        self.attrs_controller.reconcile(ctx, instance["LoadBalancerArn"], annos.load_balancer.attributes)
        return instance

    def build_config(self, ctx, service: Dict[str, Any], annos: ServiceAnnotations) -> LoadBalancerConfig:
        namespace = service["metadata"]["namespace"]
        name = service["metadata"]["name"]

        lb_tags = self.name_tag_gen.tag_lb(namespace, name)
        lb_tags.update(annos.tags)

        return LoadBalancerConfig(
            name=self.name_tag_gen.name_lb(namespace, name),
            tags=lb_tags,
            scheme=annos.load_balancer.scheme,
            ip_address_type=annos.load_balancer.ip_address_type,
            subnets=self.resolve_subnets(ctx, annos.load_balancer.scheme, annos.load_balancer.subnets),
        )

    def validate_config(self, service: Dict[str, Any], lb_config: LoadBalancerConfig) -> None:
        """
        Reject internet-facing load balancers for Services outside the whitelist
        when the scheme is restricted.

        Raises:
            ConfigurationError: If the Service may not be internet-facing
        """
        cfg = self.store.get_config()
        if not cfg.restrict_scheme or lb_config.scheme != SCHEME_INTERNET_FACING:
            return
        namespace = service["metadata"]["namespace"]
        name = service["metadata"]["name"]
        if name not in cfg.internet_facing_services.get(namespace, []):
            raise ConfigurationError(f"service {namespace}/{name} is not in internetFacing whitelist")

    def resolve_subnets(self, ctx, scheme: str, requested: List[str]) -> List[str]:
        """
        Resolve the subnets annotation into sorted subnet IDs.

        An empty list falls back to the subnets discovered by cluster tags.

        Raises:
            ConfigurationError: If not every requested subnet resolved
        """
        if not requested:
            return self.cluster_subnets(ctx, scheme)

        subnets = [s for s in requested if s.startswith("subnet-")]
        names = [s for s in requested if not s.startswith("subnet-")]
        if names:
            subnets.extend(subnet["SubnetId"] for subnet in self.cloud.get_subnets_by_name_or_id(ctx, names))

        subnets.sort()
        if len(subnets) != len(requested):
            raise ConfigurationError(
                f"not all subnets were resolvable, ({','.join(requested)} != {','.join(subnets)})")
        return subnets

    def cluster_subnets(self, ctx, scheme: str) -> List[str]:
        """
        Discover subnets tagged for the cluster and for the scheme's ELB role,
        keeping the first subnet seen in each availability zone.

        Raises:
            ConfigurationError: If the scheme is unknown or fewer than two
                subnets qualify
        """
        if scheme == SCHEME_INTERNAL:
            role_key = TAG_NAME_SUBNET_INTERNAL_ELB
        elif scheme == SCHEME_INTERNET_FACING:
            role_key = TAG_NAME_SUBNET_PUBLIC_ELB
        else:
            raise ConfigurationError(f"invalid scheme [{scheme}]")

        cluster_key = cluster_tag_key(self.store.get_config().cluster_name)
        tagged = self.cloud.get_cluster_subnets(ctx, cluster_key)
        subnet_ids = [subnet_id_from_arn(arn) for arn, tags in tagged.items() if role_key in tags]

        out = []
        seen_zones = set()
        if subnet_ids:
            for subnet in self.cloud.get_subnets_by_name_or_id(ctx, subnet_ids):
                zone = subnet.get("AvailabilityZone")
                if zone in seen_zones:
                    continue
                seen_zones.add(zone)
                out.append(subnet["SubnetId"])

        if len(out) < MIN_CLUSTER_SUBNETS:
            raise ConfigurationError(
                f"retrieval of subnets failed to resolve 2 qualified subnets. Subnets must contain the "
                f"{cluster_key} tag with a value of shared or owned and the {role_key} tag, in at least 2 "
                f"availability zones. Either tag subnets or use the subnets annotation. "
                f"The subnets that did resolve were {out}")
        return sorted(out)

    def ensure_instance(self, ctx, lb_config: LoadBalancerConfig) -> Dict[str, Any]:
        """
        Drive the live load balancer towards lb_config.

        Absent: create. Scheme differs: delete and create. Otherwise modify
        the ip address type and subnets in place and converge tags.
        """
        instance = self.cloud.get_load_balancer_by_name(ctx, lb_config.name)
        if instance is None:
            return self._create(ctx, lb_config)

        if instance.get("Scheme") != lb_config.scheme:
            logger.info(f"LoadBalancer {lb_config.name} needs recreation due to scheme change "
                        f"({instance.get('Scheme')} => {lb_config.scheme})")
            return self._recreate(ctx, instance, lb_config)

        self._modify(ctx, instance, lb_config)
        return instance

    def _create(self, ctx, lb_config: LoadBalancerConfig) -> Dict[str, Any]:
        logger.info(f"Creating LoadBalancer {lb_config.name}")
        params = {
            "Name": lb_config.name,
            "Type": lb_config.type,
            "Scheme": lb_config.scheme,
            "Subnets": list(lb_config.subnets),
            "Tags": to_aws_tags(lb_config.tags),
        }
        if lb_config.ip_address_type:
            params["IpAddressType"] = lb_config.ip_address_type
        try:
            instance = self.cloud.create_load_balancer(ctx, **params)
        except Exception as e:
            ctx.warn("ERROR", f"failed to create LoadBalancer {lb_config.name} due to {str(e)}")
            raise
        ctx.info("CREATE", f"LoadBalancer {lb_config.name} created, ARN: {instance['LoadBalancerArn']}")
        return instance

    def _recreate(self, ctx, instance: Dict[str, Any], lb_config: LoadBalancerConfig) -> Dict[str, Any]:
        lb_arn = instance["LoadBalancerArn"]
        logger.info(f"Deleting LoadBalancer {lb_arn} for recreation")
        self.cloud.delete_load_balancer_by_arn(ctx, lb_arn)
        ctx.info("DELETE", f"LoadBalancer {lb_arn} deleted for recreation")
        return self._create(ctx, lb_config)

    def _modify(self, ctx, instance: Dict[str, Any], lb_config: LoadBalancerConfig) -> None:
        lb_arn = instance["LoadBalancerArn"]

        if lb_config.ip_address_type and instance.get("IpAddressType") != lb_config.ip_address_type:
            logger.info(f"Modifying LoadBalancer {lb_arn} due to IpAddressType change "
                        f"({instance.get('IpAddressType')} => {lb_config.ip_address_type})")
            try:
                self.cloud.set_ip_address_type(ctx, lb_arn, lb_config.ip_address_type)
            except Exception as e:
                ctx.warn("ERROR", f"failed to modify IpAddressType of {lb_arn} due to {str(e)}")
                raise
            ctx.info("MODIFY", f"IpAddressType of {lb_arn} modified")

        current_subnets = set(instance_subnets(instance))
        if current_subnets != set(lb_config.subnets):
            logger.info(f"Modifying LoadBalancer {lb_arn} due to Subnets change "
                        f"({sorted(current_subnets)} => {sorted(lb_config.subnets)})")
            try:
                self.cloud.set_subnets(ctx, lb_arn, lb_config.subnets)
            except Exception as e:
                ctx.warn("ERROR", f"failed to modify Subnets of {lb_arn} due to {str(e)}")
                raise
            ctx.info("MODIFY", f"Subnets of {lb_arn} modified")

        self.tags_controller.reconcile(ctx, lb_arn, lb_config.tags)

    def find_instance(self, ctx, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self.cloud.get_load_balancer_by_name(ctx, self.name_tag_gen.name_lb(namespace, name))

    def delete_instance(self, ctx, lb_arn: str) -> None:
        logger.info(f"Deleting LoadBalancer {lb_arn}")
        self.cloud.delete_load_balancer_by_arn(ctx, lb_arn)
        ctx.info("DELETE", f"LoadBalancer {lb_arn} deleted")
