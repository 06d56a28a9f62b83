"""
Deterministic names and ownership tags for every AWS resource the controller
manages. Names are pure functions of their inputs so resources can always be
found again by name after a restart.
"""

import hashlib
import re
from typing import Dict

# Standard tag key names
TAG_KEY_NAMESPACE = "kubernetes.io/namespace"
TAG_KEY_SERVICE_NAME = "kubernetes.io/service-name"
TAG_KEY_SERVICE_PORT = "kubernetes.io/service-port"
TAG_KEY_CLUSTER_PREFIX = "kubernetes.io/cluster/"

# Keys the upstream aws-load-balancer-controller expects, stamped so that
# resources can be adopted by it later
TAG_KEY_LBC_SERVICE_RESOURCE = "service.k8s.aws/resource"
TAG_KEY_LBC_CLUSTER = "elbv2.k8s.aws/cluster"
TAG_KEY_LBC_STACK = "service.k8s.aws/stack"

TAG_VALUE_OWNED = "owned"

LB_NAME_MAX_LENGTH = 26

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def _md5_hex(*parts: str) -> str:
    hasher = hashlib.md5()
    for part in parts:
        hasher.update(part.encode())
    return hasher.hexdigest()


def cluster_tag_key(cluster_name: str) -> str:
    return TAG_KEY_CLUSTER_PREFIX + cluster_name


class NameGenerator:
    def __init__(self, name_prefix: str):
        self.name_prefix = name_prefix

    def name_lb(self, namespace: str, service_name: str) -> str:
        """
        Name of the NLB for a Service.

        The sanitized ``prefix-namespaceservice`` part is cut to 26 characters
        and a 4 character md5 suffix of namespace+service keeps truncated names
        distinct.
        """
        name = (_NON_ALNUM.sub("-", self.name_prefix) + "-"
                + _NON_ALNUM.sub("", namespace) + _NON_ALNUM.sub("", service_name))
        return name[:LB_NAME_MAX_LENGTH] + "-" + _md5_hex(namespace + service_name)[:4]

    def name_tg(self, namespace: str, service_name: str, backend_service_name: str,
                service_port: str, target_type: str, protocol: str) -> str:
        """Name of the Target Group for one backend of a Service."""
        lb_name = self.name_lb(namespace, service_name)
        digest = _md5_hex(lb_name, backend_service_name, service_port, protocol, target_type)
        return f"{self.name_prefix[:12]}-{digest[:19]}"


class TagGenerator:
    def __init__(self, cluster_name: str, default_tags: Dict[str, str] = None):
        self.cluster_name = cluster_name
        self.default_tags = dict(default_tags or {})

    def tag_lb(self, namespace: str, service_name: str) -> Dict[str, str]:
        tags = self._tag_service_resources(namespace, service_name)
        tags[TAG_KEY_LBC_SERVICE_RESOURCE] = "LoadBalancer"
        return tags

    def tag_tg_group(self, namespace: str, service_name: str) -> Dict[str, str]:
        return self._tag_service_resources(namespace, service_name)

    def tag_tg(self, namespace: str, service_name: str, service_port: str) -> Dict[str, str]:
        return {
            TAG_KEY_SERVICE_NAME: service_name,
            TAG_KEY_SERVICE_PORT: service_port,
            TAG_KEY_LBC_SERVICE_RESOURCE: f"{namespace}/{service_name}:{service_port}",
        }

    def ownership_selector(self, namespace: str, service_name: str) -> Dict[str, str]:
        """The subset of tags that identifies resources owned by one Service."""
        return {
            cluster_tag_key(self.cluster_name): TAG_VALUE_OWNED,
            TAG_KEY_NAMESPACE: namespace,
            TAG_KEY_SERVICE_NAME: service_name,
        }

    def _tag_service_resources(self, namespace: str, service_name: str) -> Dict[str, str]:
        tags = dict(self.default_tags)
        tags.update(self.ownership_selector(namespace, service_name))
        tags[TAG_KEY_LBC_CLUSTER] = self.cluster_name
        tags[TAG_KEY_LBC_STACK] = f"{namespace}/{service_name}"
        return tags


class NameTagGenerator:
    """Composes a NameGenerator and a TagGenerator behind one collaborator."""

    def __init__(self, names: NameGenerator, tags: TagGenerator):
        self.names = names
        self.tags = tags

    @classmethod
    def from_config(cls, cfg) -> "NameTagGenerator":
        return cls(NameGenerator(cfg.name_prefix), TagGenerator(cfg.cluster_name, cfg.default_tags))

    def name_lb(self, namespace, service_name):
        return self.names.name_lb(namespace, service_name)

    def name_tg(self, namespace, service_name, backend_service_name, service_port, target_type, protocol):
        return self.names.name_tg(namespace, service_name, backend_service_name, service_port, target_type, protocol)

    def tag_lb(self, namespace, service_name):
        return self.tags.tag_lb(namespace, service_name)

    def tag_tg_group(self, namespace, service_name):
        return self.tags.tag_tg_group(namespace, service_name)

    def tag_tg(self, namespace, service_name, service_port):
        return self.tags.tag_tg(namespace, service_name, service_port)

    def ownership_selector(self, namespace, service_name):
        return self.tags.ownership_selector(namespace, service_name)
