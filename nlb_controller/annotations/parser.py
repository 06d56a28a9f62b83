from typing import Dict, List, Optional

from ..errors import ConfigurationError


class AnnotationParser:
    """
    Reads typed values from Service annotations under a configurable prefix.

    Missing annotations return None (or an empty collection); present but
    malformed values raise ConfigurationError.
    """

    def __init__(self, prefix: str):
        self.prefix = prefix

    def key(self, suffix: str) -> str:
        return f"{self.prefix}/{suffix}"

    def get_string(self, name: str, annotations: Dict[str, str]) -> Optional[str]:
        return (annotations or {}).get(self.key(name))

    def get_int(self, name: str, annotations: Dict[str, str]) -> Optional[int]:
        value = self.get_string(name, annotations)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"annotation {self.key(name)} contains invalid value {value}")

    def get_bool(self, name: str, annotations: Dict[str, str]) -> Optional[bool]:
        value = self.get_string(name, annotations)
        if value is None:
            return None
        lowered = value.lower()
        if lowered in ("1", "t", "true"):
            return True
        if lowered in ("0", "f", "false"):
            return False
        raise ConfigurationError(f"annotation {self.key(name)} contains invalid value {value}")

    def get_string_slice(self, name: str, annotations: Dict[str, str]) -> List[str]:
        """Comma separated list, blanks dropped."""
        value = self.get_string(name, annotations)
        if value is None:
            return []
        return [part.strip() for part in value.split(",") if part.strip()]

    def get_key_values(self, name: str, annotations: Dict[str, str]) -> Dict[str, str]:
        """Comma separated ``Key=Value`` pairs."""
        bad = []
        result = {}
        for attr in self.get_string_slice(name, annotations):
            parts = attr.split("=")
            if len(parts) != 2:
                bad.append(attr)
                continue
            result[parts[0].strip()] = parts[1].strip()
        if bad:
            raise ConfigurationError(f"unable to parse `{', '.join(bad)}` into Key=Value pair(s)")
        return result

    def get_string_group(self, name: str, annotations: Dict[str, str]) -> Dict[str, str]:
        """All annotations named ``<prefix>/<name>.<suffix>``, keyed by suffix."""
        group_prefix = self.key(name + ".")
        return {
            key[len(group_prefix):]: value
            for key, value in (annotations or {}).items()
            if key.startswith(group_prefix)
        }
