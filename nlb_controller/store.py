"""
Read cache of the cluster objects the reconcilers need.

The kopf event handlers are the only writers: each write replaces a whole
deep-copied object under the lock, so readers on worker threads never observe
a partially updated object. Readers must not mutate what they get back.
"""

import copy
import logging
import threading
from typing import Any, Dict, List

from .annotations import ServiceAnnotations, parse_service_annotations
from .config import Configuration
from .errors import NotFoundError

logger = logging.getLogger(__name__)

NODE_ROLE_MASTER_LABEL = "node-role.kubernetes.io/master"
NODE_EXCLUDE_BALANCER_LABEL = "alpha.service-controller.kubernetes.io/exclude-balancer"


def object_key(obj: Dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace")
    return f"{namespace}/{metadata['name']}" if namespace else metadata["name"]


def is_valid_node(node: Dict[str, Any]) -> bool:
    """Masters and nodes excluded from load balancing never receive targets."""
    labels = (node.get("metadata") or {}).get("labels") or {}
    return NODE_ROLE_MASTER_LABEL not in labels and NODE_EXCLUDE_BALANCER_LABEL not in labels


def node_instance_id(node: Dict[str, Any]) -> str:
    """
    Instance ID taken from the node's providerID (``aws:///us-east-1a/i-0abc``).

    Raises:
        NotFoundError: If the node has no providerID
    """
    provider_id = (node.get("spec") or {}).get("providerID")
    if not provider_id:
        raise NotFoundError(f"providerID of node {node['metadata']['name']}")
    return provider_id.split("/")[-1]


class Store:
    def __init__(self, cfg: Configuration):
        self._cfg = cfg
        self._lock = threading.Lock()
        self._services = {}
        self._endpoints = {}
        self._nodes = {}
        self._pods = {}

    # writers, called from kopf handlers

    def upsert_service(self, obj):
        return self._upsert(self._services, obj)

    def delete_service(self, obj):
        return self._delete(self._services, obj)

    def upsert_endpoints(self, obj):
        return self._upsert(self._endpoints, obj)

    def delete_endpoints(self, obj):
        return self._delete(self._endpoints, obj)

    def upsert_node(self, obj):
        return self._upsert(self._nodes, obj)

    def delete_node(self, obj):
        return self._delete(self._nodes, obj)

    def upsert_pod(self, obj):
        # only addresses are read back; full pod specs would dominate memory
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        snapshot = {
            "metadata": {k: metadata[k] for k in ("name", "namespace") if k in metadata},
            "status": {k: status[k] for k in ("podIP", "hostIP") if k in status},
        }
        return self._upsert(self._pods, snapshot)

    def delete_pod(self, obj):
        return self._delete(self._pods, obj)

    def set_internet_facing_services(self, whitelist: Dict[str, List[str]]) -> None:
        with self._lock:
            self._cfg.internet_facing_services = {ns: list(names) for ns, names in whitelist.items()}
        logger.info(f"Internet-facing whitelist updated: {whitelist}")

    def _upsert(self, index, obj):
        """Store a copy of obj and return the previous copy (or None)."""
        key = object_key(obj)
        snapshot = copy.deepcopy(obj)
        with self._lock:
            old = index.get(key)
            index[key] = snapshot
        return old

    def _delete(self, index, obj):
        key = object_key(obj)
        with self._lock:
            return index.pop(key, None)

    # readers

    def get_config(self) -> Configuration:
        return self._cfg

    def get_service(self, key: str) -> Dict[str, Any]:
        with self._lock:
            service = self._services.get(key)
        if service is None:
            raise NotFoundError(key)
        return service

    def list_services(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._services.values())

    def get_service_annotations(self, key: str) -> ServiceAnnotations:
        service = self.get_service(key)
        return parse_service_annotations((service.get("metadata") or {}).get("annotations"), self._cfg)

    def get_service_endpoints(self, key: str) -> Dict[str, Any]:
        with self._lock:
            endpoints = self._endpoints.get(key)
        if endpoints is None:
            raise NotFoundError(key)
        return endpoints

    def list_nodes(self) -> List[Dict[str, Any]]:
        with self._lock:
            nodes = list(self._nodes.values())
        return [node for node in nodes if is_valid_node(node)]

    def get_node_instance_id(self, node: Dict[str, Any]) -> str:
        return node_instance_id(node)

    def get_instance_id_from_pod_ip(self, ip: str) -> str:
        with self._lock:
            pods = list(self._pods.values())
            nodes = list(self._nodes.values())

        host_ip = None
        for pod in pods:
            status = pod.get("status") or {}
            if status.get("podIP") == ip:
                host_ip = status.get("hostIP")
                break
        if not host_ip:
            raise NotFoundError(f"host of pod ip {ip}")

        for node in nodes:
            for address in (node.get("status") or {}).get("addresses") or []:
                if address.get("address") == host_ip:
                    return node_instance_id(node)
        raise NotFoundError(f"host of pod ip {ip}")

    def get_cluster_instance_ids(self) -> List[str]:
        return [node_instance_id(node) for node in self.list_nodes()]
