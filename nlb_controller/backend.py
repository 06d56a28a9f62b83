import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .annotations import USE_ACTION_ANNOTATION, ServiceAnnotations
from .errors import ConfigurationError, DependencyMissingError
from .store import object_key

logger = logging.getLogger(__name__)

PROTOCOL_TCP = "TCP"
PROTOCOL_UDP = "UDP"
PROTOCOL_TCP_UDP = "TCP_UDP"


@dataclass(frozen=True)
class Backend:
    """
    One routing target of a Service, derived from one of its port numbers.

    For a static action backend ``service_name`` is the action name and
    ``service_port`` is ``use-annotation``. ``protocol`` is the protocol of
    both the listener and the Target Group serving the backend.
    """

    service_name: str
    service_port: str
    protocol: str = PROTOCOL_TCP


@dataclass(frozen=True)
class ListenerSpec:
    port: int
    protocol: str
    backend: Backend


def service_ports(service: Dict[str, Any]) -> List[Dict[str, Any]]:
    return (service.get("spec") or {}).get("ports") or []


def port_protocol(port: Dict[str, Any]) -> str:
    return port.get("protocol") or PROTOCOL_TCP


def listener_protocol(service: Dict[str, Any], number: int, ports: List[Dict[str, Any]],
                      annos: ServiceAnnotations) -> str:
    """
    Protocol of the listener (and Target Group) for all Service ports sharing
    one port number.

    An NLB has one listener per port, so a TCP and a UDP port with the same
    number share a TCP_UDP listener. UDP ports stay UDP; TCP ports use the
    backend-protocol annotation.

    Raises:
        ConfigurationError: If the ports use a protocol an NLB cannot serve
            or repeat a protocol
    """
    protocols = [port_protocol(port) for port in ports]
    unsupported = sorted(set(protocols) - {PROTOCOL_TCP, PROTOCOL_UDP})
    if unsupported:
        raise ConfigurationError(
            f"port {number} of service {object_key(service)} uses unsupported protocol {', '.join(unsupported)}")
    if len(protocols) != len(set(protocols)):
        raise ConfigurationError(f"port {number} of service {object_key(service)} repeats protocol {protocols[0]}")
    if len(protocols) > 1:
        return PROTOCOL_TCP_UDP
    if protocols[0] == PROTOCOL_UDP:
        return PROTOCOL_UDP
    return annos.target_group.backend_protocol


def build_listener_specs(service: Dict[str, Any], annos: ServiceAnnotations) -> List[ListenerSpec]:
    """
    One listener per distinct Service port number, in declaration order.

    A port whose name has a matching ``actions.<name>`` annotation routes to
    that static action instead of a Target Group.

    Raises:
        ConfigurationError: If a port number cannot be served by one listener
    """
    by_number: Dict[int, List[Dict[str, Any]]] = {}
    for port in service_ports(service):
        by_number.setdefault(int(port["port"]), []).append(port)

    specs = []
    for number, ports in by_number.items():
        protocol = listener_protocol(service, number, ports, annos)
        action_names = [p["name"] for p in ports if p.get("name") and p["name"] in annos.actions]
        if action_names:
            backend = Backend(service_name=action_names[0], service_port=USE_ACTION_ANNOTATION, protocol=protocol)
        else:
            backend = Backend(service_name=service["metadata"]["name"], service_port=str(number), protocol=protocol)
        specs.append(ListenerSpec(port=number, protocol=protocol, backend=backend))
    return specs


def find_service_port(service: Dict[str, Any], ref: str) -> Dict[str, Any]:
    """
    Find a Service port by number or by name.

    Raises:
        DependencyMissingError: If no port matches
    """
    for port in service_ports(service):
        if str(port.get("port")) == ref or port.get("name") == ref:
            return port
    raise DependencyMissingError(f"unable to find port {ref} on service {object_key(service)}")


class EndpointResolver:
    """Resolves the targets a Target Group should contain for one backend."""

    def __init__(self, store):
        self.store = store

    def resolve(self, service: Dict[str, Any], backend: Backend, target_type: str) -> List[Dict[str, Any]]:
        """
        Desired targets for a backend.

        Args:
            service: the Service owning the backend
            backend: the backend to resolve
            target_type: "instance" or "ip"

        Returns:
            List of {'Id': ..., 'Port': ...} sorted by Id then Port

        Raises:
            DependencyMissingError: If the node port, endpoints or node data is missing
        """
        port = find_service_port(service, backend.service_port)
        if target_type == "instance":
            targets = self._resolve_instance(service, backend, port)
        else:
            targets = self._resolve_ip(service, port)
        return sorted(targets, key=lambda t: (t["Id"], t["Port"]))

    def _resolve_instance(self, service, backend, port):
        node_port = port.get("nodePort") or 0
        if not node_port:
            raise DependencyMissingError(
                f"failed to find valid NodePort for service {object_key(service)} with port {port.get('name') or port['port']}")
        if backend.protocol == PROTOCOL_TCP_UDP:
            # one target port serves both protocols
            node_ports = {p.get("nodePort") for p in service_ports(service) if str(p.get("port")) == backend.service_port}
            if len(node_ports) > 1:
                raise ConfigurationError(
                    f"TCP and UDP node ports of port {backend.service_port} on service {object_key(service)} differ")
        return [{"Id": instance_id, "Port": int(node_port)} for instance_id in self.store.get_cluster_instance_ids()]

    def _resolve_ip(self, service, port):
        endpoints = self.store.get_service_endpoints(object_key(service))
        targets = []
        for subset in endpoints.get("subsets") or []:
            ep_port = _match_endpoint_port(subset.get("ports") or [], port)
            if ep_port is None:
                continue
            for address in subset.get("addresses") or []:
                targets.append({"Id": address["ip"], "Port": int(ep_port["port"])})
        return targets


def find_endpoint_port(endpoints: Dict[str, Any], service_port: Dict[str, Any]) -> Optional[int]:
    """Container port number serving ``service_port``, taken from the Endpoints, or None."""
    for subset in (endpoints or {}).get("subsets") or []:
        ep_port = _match_endpoint_port(subset.get("ports") or [], service_port)
        if ep_port is not None:
            return int(ep_port["port"])
    return None


def _match_endpoint_port(ep_ports, service_port):
    # Endpoint ports carry the name of the Service port they belong to
    name = service_port.get("name")
    for ep_port in ep_ports:
        if name and ep_port.get("name") == name:
            return ep_port
    if not name and len(ep_ports) == 1:
        return ep_ports[0]
    return None
