"""
Static operation requirement table.
"""

import json
from typing import Any, Dict, Optional

from shared.logging import get_logger
from shared.errors import ConfigurationError
from ..models import Requirement


def default_requirements() -> Dict[str, Requirement]:
    """Requirements guarding this service's own role and grant routes."""
    return {
        "resources.grant": Requirement(permissions=["resource:grant"]),
        "resources.revoke": Requirement(permissions=["resource:revoke"]),
        # The delegating principal is the caller; the ACL itself checks the actions
        "resources.delegate": Requirement(),
        "resources.read": Requirement(permissions=["resource:read"]),
        "roles.read": Requirement(permissions=["role:read"]),
    }


class RequirementRegistry:
    """Maps operation ids to their declared requirements."""

    def __init__(self, requirements: Optional[Dict[str, Requirement]] = None):
        self.logger = get_logger("authz.decision.registry")
        self._requirements: Dict[str, Requirement] = dict(default_requirements())
        if requirements:
            self._requirements.update(requirements)

    def register(self, operation: str, requirement: Requirement):
        self._requirements[operation] = requirement
        self.logger.debug("Requirement registered", operation=operation)

    def requirement_for(self, operation: str) -> Requirement:
        """Look up an operation; unknown ids are a deployment error."""
        try:
            return self._requirements[operation]
        except KeyError:
            raise ConfigurationError(
                f"No requirement registered for operation: {operation}",
                details={"operation": operation}
            )

    def load_file(self, path: str) -> int:
        """Merge a JSON ``{operation: requirement}`` table over the current one."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                table: Dict[str, Any] = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                "Failed to load requirements file",
                details={"path": path, "error": str(e)}
            )

        if not isinstance(table, dict):
            raise ConfigurationError(
                "Requirements file must hold a JSON object",
                details={"path": path}
            )

        for operation, entry in table.items():
            try:
                self.register(operation, Requirement.from_dict(entry))
            except (AttributeError, KeyError, TypeError) as e:
                raise ConfigurationError(
                    f"Malformed requirement for operation: {operation}",
                    details={"path": path, "error": str(e)}
                )

        self.logger.info("Requirements loaded", path=path, count=len(table))
        return len(table)

    @property
    def operations(self):
        return sorted(self._requirements)

    def __contains__(self, operation: str) -> bool:
        return operation in self._requirements
