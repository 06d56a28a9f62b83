import json
from typing import Any, Dict

from ..errors import ConfigurationError, DependencyMissingError

USE_ACTION_ANNOTATION = "use-annotation"
SUPPORTED_ACTION_TYPES = ("forward",)


def use(service_port: str) -> bool:
    """True if a backend port requests an annotation configured action."""
    return service_port == USE_ACTION_ANNOTATION


class ActionConfig:
    """Static actions declared with ``actions.<name>`` annotations (JSON)."""

    def __init__(self, actions: Dict[str, Dict[str, Any]] = None):
        self.actions = actions or {}

    @classmethod
    def parse(cls, raw_actions: Dict[str, str]) -> "ActionConfig":
        actions = {}
        for name, raw in raw_actions.items():
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise ConfigurationError(f"action {name} is not valid JSON: {str(e)}")
            if not isinstance(data, dict):
                raise ConfigurationError(f"action {name} must be a JSON object")
            actions[name] = data
        return cls(actions)

    def __contains__(self, name: str) -> bool:
        return name in self.actions

    def get_action(self, name: str) -> Dict[str, Any]:
        """
        Return a copy of the validated action named ``name``.

        Raises:
            DependencyMissingError: If no action annotation is declared for name
            ConfigurationError: If the action type is unsupported or a forward
                action has no TargetGroupArn
        """
        if name not in self.actions:
            raise DependencyMissingError(
                f"backend with `servicePort: {USE_ACTION_ANNOTATION}` was configured with "
                f"`serviceName: {name}` but an action annotation for {name} is not set")
        action = dict(self.actions[name])
        action_type = action.get("Type")
        if action_type not in SUPPORTED_ACTION_TYPES:
            raise ConfigurationError(f"an invalid action type {action_type} was configured in {name}")
        if action_type == "forward" and not action.get("TargetGroupArn"):
            raise ConfigurationError(f"{name} is type forward but did not include a valid TargetGroupArn configuration")
        return action
