"""
Mapping of watch events to the Service keys that need a reconcile.

Each function receives the event type as reported by kopf ('ADDED',
'MODIFIED', 'DELETED', or None for objects seen during the initial listing),
the previous snapshot from the store (None if unseen) and the new object.
"""

import logging
from typing import Dict, Any, List, Optional

from .annotations import is_valid_service
from .errors import NotFoundError
from .store import is_valid_node, object_key

logger = logging.getLogger(__name__)

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"

INTERNET_FACING_CONFIGMAP_NAME = "nlb-internet-facing-services"


def normalize_event_type(event_type: Optional[str]) -> str:
    # kopf reports objects from the initial listing with no type
    return event_type or EVENT_ADDED


def _service_changed(old: Dict[str, Any], new: Dict[str, Any]) -> bool:
    old_meta = old.get("metadata") or {}
    new_meta = new.get("metadata") or {}
    return (old.get("spec") != new.get("spec")
            or old_meta.get("annotations") != new_meta.get("annotations")
            or old_meta.get("deletionTimestamp") != new_meta.get("deletionTimestamp"))


def service_event_keys(event_type: Optional[str], old: Optional[Dict[str, Any]],
                       new: Dict[str, Any], service_class: str) -> List[str]:
    """
    Keys to enqueue for a Service event.

    The Service is enqueued when it belongs to our class before or after the
    event, so leaving the class cleans up its resources. Updates that change
    neither spec, annotations nor deletion state are dropped, which filters
    out our own status patches.
    """
    event_type = normalize_event_type(event_type)
    if event_type == EVENT_MODIFIED and old is not None and not _service_changed(old, new):
        return []
    candidates = [new] if old is None else [old, new]
    if any(is_valid_service(service_class, svc) for svc in candidates):
        return [object_key(new)]
    return []


def endpoints_event_keys(event_type: Optional[str], old: Optional[Dict[str, Any]],
                         new: Dict[str, Any], store) -> List[str]:
    """The same-named Service, when it is ours and the endpoint subsets changed."""
    event_type = normalize_event_type(event_type)
    if event_type == EVENT_MODIFIED and old is not None and old.get("subsets") == new.get("subsets"):
        return []
    key = object_key(new)
    service_class = store.get_config().service_class
    try:
        service = store.get_service(key)
    except NotFoundError:
        return []
    return [key] if is_valid_service(service_class, service) else []


def _node_eligibility(node: Dict[str, Any]):
    return is_valid_node(node), (node.get("spec") or {}).get("providerID")


def node_event_keys(event_type: Optional[str], old: Optional[Dict[str, Any]],
                    new: Dict[str, Any], store) -> List[str]:
    """
    Every qualifying Service when the set of target nodes may have changed.

    Additions and deletions always count; updates only when the node's
    eligibility or provider ID changed.
    """
    event_type = normalize_event_type(event_type)
    if event_type == EVENT_MODIFIED and old is not None and _node_eligibility(old) == _node_eligibility(new):
        return []
    return qualifying_service_keys(store)


def parse_internet_facing_services(data: Optional[Dict[str, str]]) -> Dict[str, List[str]]:
    """ConfigMap data (namespace -> comma-separated Service names) as a whitelist."""
    whitelist = {}
    for namespace, names in (data or {}).items():
        whitelist[namespace] = [name.strip() for name in (names or "").split(",") if name.strip()]
    return whitelist


def is_internet_facing_configmap(obj: Dict[str, Any], cfg) -> bool:
    metadata = obj.get("metadata") or {}
    return (metadata.get("name") == INTERNET_FACING_CONFIGMAP_NAME
            and metadata.get("namespace") == cfg.restrict_scheme_namespace)


def configmap_event_keys(event_type: Optional[str], obj: Dict[str, Any], store) -> List[str]:
    """
    Refresh the internet-facing whitelist from its ConfigMap and enqueue
    every qualifying Service, since any of them may be affected.
    """
    cfg = store.get_config()
    if not cfg.restrict_scheme or not is_internet_facing_configmap(obj, cfg):
        return []
    if normalize_event_type(event_type) == EVENT_DELETED:
        store.set_internet_facing_services({})
    else:
        store.set_internet_facing_services(parse_internet_facing_services(obj.get("data")))
    return qualifying_service_keys(store)


def qualifying_service_keys(store) -> List[str]:
    service_class = store.get_config().service_class
    return sorted(object_key(svc) for svc in store.list_services() if is_valid_service(service_class, svc))
