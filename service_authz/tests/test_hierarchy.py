"""
Unit tests for role hierarchy resolution.
"""

import pytest

from shared.errors import ConfigurationError, NotFoundError, ValidationError
from service_authz.app.models import EntityStatus, Permission, Role
from service_authz.app.persistence.memory import create_memory_stores
from service_authz.app.rbac.hierarchy import RoleHierarchyResolver


class TestRoleHierarchyResolver:
    """Test cases for RoleHierarchyResolver."""

    @pytest.fixture
    def chain(self):
        """Roles R1 <- R2 <- R3, one permission each."""
        stores = create_memory_stores()
        stores.roles.add_role(Role(role_id="r1", name="r1"))
        stores.roles.add_role(Role(role_id="r2", name="r2", parent_id="r1"))
        stores.roles.add_role(Role(role_id="r3", name="r3", parent_id="r2"))

        for index in (1, 2, 3):
            stores.permissions.add_permission(Permission.create(f"p{index}", "doc", f"action{index}"))
            stores.permissions.assign(f"r{index}", f"p{index}")

        return stores

    @pytest.fixture
    def chain_resolver(self, chain):
        return RoleHierarchyResolver(chain.roles, chain.permissions)

    @pytest.mark.asyncio
    async def test_effective_permissions_include_every_ancestor(self, chain_resolver):
        """Test that a leaf role inherits its whole parent chain."""
        effective = await chain_resolver.resolve_effective_permissions("r3")

        assert effective == {"doc:action1", "doc:action2", "doc:action3"}

    @pytest.mark.asyncio
    async def test_root_role_has_only_its_own_permissions(self, chain_resolver):
        """Test that inheritance only flows from parent to child."""
        effective = await chain_resolver.resolve_effective_permissions("r1")

        assert effective == {"doc:action1"}

    @pytest.mark.asyncio
    async def test_indirect_cycle_raises_configuration_error(self, chain, chain_resolver):
        """Test that a loop through the parent chain is reported, not followed forever."""
        chain.roles.set_parent("r1", "r3")

        with pytest.raises(ConfigurationError) as exc_info:
            await chain_resolver.resolve_effective_permissions("r3")

        assert exc_info.value.code == "CONFIGURATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_role_raises_not_found(self, chain_resolver):
        """Test resolving a role that does not exist."""
        with pytest.raises(NotFoundError):
            await chain_resolver.resolve_effective_permissions("missing")

    @pytest.mark.asyncio
    async def test_inactive_ancestor_ends_walk(self, chain, chain_resolver):
        """Test that an inactive role contributes nothing and stops inheritance."""
        chain.roles.roles["r2"].is_active = False

        effective = await chain_resolver.resolve_effective_permissions("r3")

        assert effective == {"doc:action3"}

    @pytest.mark.asyncio
    async def test_deleted_permission_is_skipped(self, chain, chain_resolver):
        """Test that soft-deleted permissions are not granted."""
        chain.permissions.permissions["p1"].status = EntityStatus.DELETED

        effective = await chain_resolver.resolve_effective_permissions("r3")

        assert "doc:action1" not in effective
        assert effective == {"doc:action2", "doc:action3"}

    @pytest.mark.asyncio
    async def test_resolve_for_roles_unions_results(self, resolver):
        """Test the union over several held roles."""
        effective = await resolver.resolve_for_roles(["r-viewer", "r-admin"])

        assert "user:read" in effective
        assert "policy:delete" in effective
        assert "policy:read" not in effective

    def test_self_parenting_rejected_on_write(self, chain):
        """Test that a role cannot be made its own parent."""
        with pytest.raises(ValidationError):
            chain.roles.set_parent("r2", "r2")

    @pytest.mark.asyncio
    async def test_get_role_hierarchy(self, resolver, stores):
        """Test the nested view of a role and its live descendants."""
        stores.roles.add_role(Role(role_id="r-intern", name="intern", parent_id="r-manager", is_active=False))

        tree = await resolver.get_role_hierarchy("r-admin")

        assert tree["name"] == "admin"
        assert "policy:delete" in tree["permissions"]
        assert [child["name"] for child in tree["children"]] == ["manager"]
        assert tree["children"][0]["children"] == []

    @pytest.mark.asyncio
    async def test_get_role_hierarchy_unknown_role(self, resolver):
        """Test the hierarchy view of a missing role."""
        with pytest.raises(NotFoundError):
            await resolver.get_role_hierarchy("missing")
