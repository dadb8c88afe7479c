"""
In-memory stores for local mode and tests.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from shared.errors import ConflictError, NotFoundError, ValidationError
from shared.logging import get_logger
from ..models import EntityStatus, GrantKey, Permission, Policy, ResourceGrant, Role
from .base import GrantStore, PermissionStore, PolicyStore, RoleStore, StoreBundle


class InMemoryRoleStore(RoleStore):
    """Dict-backed role store."""

    def __init__(self):
        self.logger = get_logger("authz.store.roles")
        self.roles: Dict[str, Role] = {}

    def add_role(self, role: Role) -> Role:
        """Add a role. Names are unique; the parent must exist and differ from the role."""
        existing = self._by_name(role.name)
        if existing and existing.status is EntityStatus.ACTIVE and existing.role_id != role.role_id:
            raise ConflictError("Role with this name already exists", details={"name": role.name})

        if role.parent_id:
            self._validate_parent(role.role_id, role.parent_id)

        self.roles[role.role_id] = role
        self.logger.info("Role added", role_id=role.role_id, name=role.name)
        return role

    def set_parent(self, role_id: str, parent_id: Optional[str]) -> Role:
        """Re-parent a role. Only direct self-parenting is rejected."""
        role = self.roles.get(role_id)
        if role is None or role.status is EntityStatus.DELETED:
            raise NotFoundError("Role not found", details={"role_id": role_id})

        if parent_id:
            self._validate_parent(role_id, parent_id)

        role.parent_id = parent_id
        return role

    def _validate_parent(self, role_id: str, parent_id: str):
        if parent_id == role_id:
            raise ValidationError("Role cannot be its own parent", details={"role_id": role_id})
        if parent_id not in self.roles:
            raise NotFoundError("Parent role not found", details={"parent_id": parent_id})

    def _by_name(self, name: str) -> Optional[Role]:
        for role in self.roles.values():
            if role.name == name:
                return role
        return None

    async def find_by_id(self, role_id: str) -> Optional[Role]:
        return self.roles.get(role_id)

    async def find_by_name(self, name: str) -> Optional[Role]:
        return self._by_name(name)

    async def find_children(self, role_id: str) -> List[Role]:
        return [role for role in self.roles.values() if role.parent_id == role_id]


class InMemoryPermissionStore(PermissionStore):
    """Dict-backed permission store with role-permission edges."""

    def __init__(self):
        self.permissions: Dict[str, Permission] = {}
        self.edges: Set[Tuple[str, str]] = set()

    def add_permission(self, permission: Permission) -> Permission:
        for existing in self.permissions.values():
            if (existing.name == permission.name
                    and existing.status is EntityStatus.ACTIVE
                    and existing.permission_id != permission.permission_id):
                raise ConflictError("Permission already exists", details={"name": permission.name})
        self.permissions[permission.permission_id] = permission
        return permission

    def assign(self, role_id: str, permission_id: str):
        if permission_id not in self.permissions:
            raise NotFoundError("Permission not found", details={"permission_id": permission_id})
        if (role_id, permission_id) in self.edges:
            raise ConflictError("Role already has this permission", details={"role_id": role_id})
        self.edges.add((role_id, permission_id))

    def unassign(self, role_id: str, permission_id: str):
        self.edges.discard((role_id, permission_id))

    async def find_by_role(self, role_id: str) -> List[Permission]:
        return [
            self.permissions[permission_id]
            for edge_role_id, permission_id in sorted(self.edges)
            if edge_role_id == role_id
        ]

    async def find_by_name(self, name: str) -> Optional[Permission]:
        for permission in self.permissions.values():
            if permission.name == name:
                return permission
        return None


class InMemoryPolicyStore(PolicyStore):
    """Dict-backed policy store."""

    def __init__(self):
        self.policies: Dict[str, Policy] = {}

    def add_policy(self, policy: Policy) -> Policy:
        existing = self.policies.get(policy.name)
        if existing and existing.status is EntityStatus.ACTIVE:
            raise ConflictError("Policy already exists", details={"name": policy.name})
        self.policies[policy.name] = policy
        return policy

    async def find_by_name(self, name: str) -> Optional[Policy]:
        return self.policies.get(name)


class InMemoryGrantStore(GrantStore):
    """Dict-backed grant store."""

    def __init__(self):
        self.grants: Dict[GrantKey, ResourceGrant] = {}

    def soft_delete(self, key: GrantKey) -> bool:
        grant = self.grants.get(key)
        if grant is None:
            return False
        grant.status = EntityStatus.DELETED
        grant.updated_at = datetime.now()
        return True

    async def get(self, key: GrantKey) -> Optional[ResourceGrant]:
        return self.grants.get(key)

    async def upsert(self, key: GrantKey, actions: Iterable[str]) -> ResourceGrant:
        grant = self.grants.get(key)
        if grant is None:
            grant = ResourceGrant(key=key, actions=frozenset(actions))
            self.grants[key] = grant
        else:
            grant.actions = frozenset(actions)
            grant.updated_at = datetime.now()
        return grant

    async def delete(self, key: GrantKey) -> bool:
        return self.grants.pop(key, None) is not None

    async def list_for_principal(self, principal_id: str,
                                 resource_type: Optional[str] = None) -> List[ResourceGrant]:
        return [
            grant for key, grant in sorted(self.grants.items())
            if key.principal_id == principal_id
            and grant.is_live
            and (resource_type is None or key.resource_type == resource_type)
        ]

    async def list_for_resource(self, resource_type: str, resource_id: str) -> List[ResourceGrant]:
        return [
            grant for key, grant in sorted(self.grants.items())
            if key.resource_type == resource_type
            and key.resource_id == resource_id
            and grant.is_live
        ]


def create_memory_stores() -> StoreBundle:
    """Build an empty in-memory store bundle."""
    return StoreBundle(
        roles=InMemoryRoleStore(),
        permissions=InMemoryPermissionStore(),
        policies=InMemoryPolicyStore(),
        grants=InMemoryGrantStore(),
    )
