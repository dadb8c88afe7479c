"""
Unit tests for the operation requirement table.
"""

import json
import pytest

from shared.errors import ConfigurationError
from service_authz.app.decision.registry import RequirementRegistry
from service_authz.app.models import Requirement


class TestRequirementRegistry:
    """Test cases for RequirementRegistry."""

    @pytest.fixture
    def registry(self):
        return RequirementRegistry()

    def test_builtin_operations(self, registry):
        assert registry.operations == [
            "resources.delegate", "resources.grant", "resources.read", "resources.revoke", "roles.read"
        ]
        assert registry.requirement_for("resources.grant").permissions == ["resource:grant"]
        assert registry.requirement_for("resources.delegate").require_authentication is True

    def test_unknown_operation(self, registry):
        with pytest.raises(ConfigurationError):
            registry.requirement_for("reports.export")

    def test_register_overrides(self, registry):
        registry.register("resources.grant", Requirement(roles=["admin"]))

        assert registry.requirement_for("resources.grant").roles == ["admin"]
        assert "resources.grant" in registry

    def test_load_file(self, registry, tmp_path):
        path = tmp_path / "requirements.json"
        path.write_text(json.dumps({
            "documents.update": {
                "requiredPermissions": ["document:update"],
                "policies": ["business-hours"],
                "resource": {"resourceType": "document", "action": "update", "idField": "documentId"}
            },
            "health.read": {"requireAuthentication": False}
        }))

        assert registry.load_file(str(path)) == 2

        requirement = registry.requirement_for("documents.update")
        assert requirement.permissions == ["document:update"]
        assert requirement.roles is None
        assert requirement.policies == ["business-hours"]
        assert requirement.resource.resource_type == "document"
        assert requirement.resource.id_field == "documentId"
        assert registry.requirement_for("health.read").require_authentication is False

    def test_load_missing_file(self, registry, tmp_path):
        with pytest.raises(ConfigurationError):
            registry.load_file(str(tmp_path / "missing.json"))

    def test_load_malformed_entry(self, registry, tmp_path):
        path = tmp_path / "requirements.json"
        path.write_text(json.dumps({"documents.update": {"resource": {"resourceType": "document"}}}))

        with pytest.raises(ConfigurationError):
            registry.load_file(str(path))

    def test_load_non_object(self, registry, tmp_path):
        path = tmp_path / "requirements.json"
        path.write_text("[]")

        with pytest.raises(ConfigurationError):
            registry.load_file(str(path))
