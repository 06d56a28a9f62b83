"""
Controller configuration.

Settings are read from environment variables once at startup and the resulting
Configuration object is passed explicitly to every component that needs it.
"""

import logging
import os
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ANNOTATION_PREFIX = "nlb.service.kubernetes.io"
DEFAULT_SERVICE_CLASS = "nlb"
DEFAULT_TARGET_TYPE = "ip"
DEFAULT_BACKEND_PROTOCOL = "TCP"
DEFAULT_RESTRICT_SCHEME_NAMESPACE = "default"
DEFAULT_MAX_CONCURRENT_RECONCILES = 1
DEFAULT_RECONCILE_TIMEOUT = 300
DEFAULT_RESYNC_INTERVAL = 600

MAX_NAME_PREFIX_LENGTH = 12
TARGET_TYPES = ("instance", "ip")
BACKEND_PROTOCOLS = ("TCP", "UDP")


@dataclass
class Configuration:
    cluster_name: str = ""
    vpc_id: str = ""
    region: Optional[str] = None

    name_prefix: str = ""
    annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX
    service_class: str = DEFAULT_SERVICE_CLASS
    default_target_type: str = DEFAULT_TARGET_TYPE
    default_backend_protocol: str = DEFAULT_BACKEND_PROTOCOL
    default_tags: Dict[str, str] = field(default_factory=dict)

    restrict_scheme: bool = False
    restrict_scheme_namespace: str = DEFAULT_RESTRICT_SCHEME_NAMESPACE
    # namespace -> service names allowed to be internet-facing
    internet_facing_services: Dict[str, List[str]] = field(default_factory=dict)

    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES
    reconcile_timeout: float = DEFAULT_RECONCILE_TIMEOUT
    resync_interval: float = DEFAULT_RESYNC_INTERVAL
    enable_webhook: bool = False

    def validate(self) -> "Configuration":
        """
        Validate the configuration and fill in derived defaults.

        Returns:
            Configuration: self, for chaining

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        if self.default_target_type == "pod":
            logger.warning("The target type 'pod' has changed to 'ip' to better match AWS APIs and documentation")
            self.default_target_type = "ip"
        if self.default_target_type not in TARGET_TYPES:
            raise ConfigurationError(f"Invalid default target type {self.default_target_type}. Must be instance or ip")
        if self.default_backend_protocol not in BACKEND_PROTOCOLS:
            raise ConfigurationError(f"Invalid default backend protocol {self.default_backend_protocol}. Must be TCP or UDP")
        if not self.cluster_name:
            raise ConfigurationError("K8S_CLUSTER_NAME environment variable is required but not set")
        if not self.vpc_id:
            raise ConfigurationError("AWS_VPC_ID environment variable is required but not set")
        if len(self.name_prefix) > MAX_NAME_PREFIX_LENGTH:
            raise ConfigurationError(f"NLB name prefix must be {MAX_NAME_PREFIX_LENGTH} characters or less")
        if not self.name_prefix:
            self.name_prefix = generate_name_prefix(self.cluster_name)
        if self.max_concurrent_reconciles < 1:
            raise ConfigurationError("MAX_CONCURRENT_RECONCILES must be at least 1")
        return self


def generate_name_prefix(cluster_name: str) -> str:
    """Derive an 8 character prefix from the cluster name (crc32, hex)."""
    return format(zlib.crc32(cluster_name.encode()) & 0xffffffff, "08x")


def parse_key_values(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse a ``k1=v1,k2=v2`` string into a dict.

    Raises:
        ConfigurationError: If an entry is not a Key=Value pair
    """
    result = {}
    if not raw:
        return result
    bad = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        pieces = part.split("=")
        if len(pieces) != 2:
            bad.append(part)
            continue
        result[pieces[0].strip()] = pieces[1].strip()
    if bad:
        raise ConfigurationError(f"unable to parse `{', '.join(bad)}` into Key=Value pair(s)")
    return result


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true", "yes"):
        return True
    if lowered in ("0", "f", "false", "no", ""):
        return False
    raise ConfigurationError(f"{name} environment variable must be either true or false. Value was: {value}")


def _parse_number(name: str, value: str, cast):
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"{name} environment variable must be a number. Value was: {value}")


def load_from_env(environ=None) -> Configuration:
    """
    Build a validated Configuration from environment variables.

    Args:
        environ: Mapping to read from, defaults to os.environ

    Returns:
        Configuration: validated configuration

    Raises:
        ConfigurationError: If the environment holds invalid values
    """
    env = os.environ if environ is None else environ
    cfg = Configuration(
        cluster_name=env.get("K8S_CLUSTER_NAME", ""),
        vpc_id=env.get("AWS_VPC_ID", ""),
        region=env.get("AWS_DEFAULT_REGION"),
        name_prefix=env.get("NLB_NAME_PREFIX", ""),
        annotation_prefix=env.get("NLB_ANNOTATIONS_PREFIX", DEFAULT_ANNOTATION_PREFIX),
        service_class=env.get("NLB_SERVICE_CLASS", DEFAULT_SERVICE_CLASS),
        default_target_type=env.get("NLB_TARGET_TYPE", DEFAULT_TARGET_TYPE),
        default_backend_protocol=env.get("NLB_BACKEND_PROTOCOL", DEFAULT_BACKEND_PROTOCOL),
        default_tags=parse_key_values(env.get("DEFAULT_TAGS")),
        restrict_scheme=_parse_bool("NLB_CONTROLLER_RESTRICT_SCHEME", env.get("NLB_CONTROLLER_RESTRICT_SCHEME", "false")),
        restrict_scheme_namespace=env.get("NLB_CONTROLLER_RESTRICT_SCHEME_CONFIG_NAMESPACE", DEFAULT_RESTRICT_SCHEME_NAMESPACE),
        max_concurrent_reconciles=_parse_number(
            "MAX_CONCURRENT_RECONCILES", env.get("MAX_CONCURRENT_RECONCILES", str(DEFAULT_MAX_CONCURRENT_RECONCILES)), int),
        reconcile_timeout=_parse_number(
            "RECONCILE_TIMEOUT", env.get("RECONCILE_TIMEOUT", str(DEFAULT_RECONCILE_TIMEOUT)), float),
        resync_interval=_parse_number(
            "RESYNC_INTERVAL", env.get("RESYNC_INTERVAL", str(DEFAULT_RESYNC_INTERVAL)), float),
        enable_webhook=_parse_bool("ENABLE_WEBHOOK", env.get("ENABLE_WEBHOOK", "false")),
    )
    return cfg.validate()
