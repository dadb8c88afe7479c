"""
Role hierarchy resolution.
"""

from typing import Any, Dict, Iterable, Optional, Set

from shared.logging import get_logger
from shared.errors import ConfigurationError, NotFoundError
from ..persistence.base import PermissionStore, RoleStore


class RoleHierarchyResolver:
    """Computes effective permission sets by walking parent links."""

    def __init__(self, roles: RoleStore, permissions: PermissionStore):
        self.roles = roles
        self.permissions = permissions
        self.logger = get_logger("authz.rbac.hierarchy")

    async def resolve_effective_permissions(self, role_id: str) -> Set[str]:
        """Union of the role's own permissions and those of every ancestor.

        Raises NotFoundError for an unknown role and ConfigurationError when
        the parent chain loops back on itself. A role that is inactive or
        deleted ends the walk without contributing.
        """
        role = await self.roles.find_by_id(role_id)
        if role is None:
            raise NotFoundError("Role not found", details={"role_id": role_id})

        effective: Set[str] = set()
        visited: Set[str] = set()

        while role is not None:
            if role.role_id in visited:
                self.logger.error(
                    "Role hierarchy cycle detected",
                    role_id=role_id,
                    revisited=role.role_id,
                    path=sorted(visited)
                )
                raise ConfigurationError(
                    "Role hierarchy contains a cycle",
                    details={"role_id": role_id, "revisited": role.role_id}
                )
            visited.add(role.role_id)

            if not role.is_live:
                break

            for permission in await self.permissions.find_by_role(role.role_id):
                if permission.is_live:
                    effective.add(permission.name)

            if not role.parent_id:
                break
            role = await self.roles.find_by_id(role.parent_id)

        self.logger.debug(
            "Resolved effective permissions",
            role_id=role_id,
            depth=len(visited),
            permission_count=len(effective)
        )
        return effective

    async def resolve_for_roles(self, role_ids: Iterable[str]) -> Set[str]:
        """Union of the effective permissions of several roles."""
        effective: Set[str] = set()
        for role_id in role_ids:
            effective |= await self.resolve_effective_permissions(role_id)
        return effective

    async def get_role_hierarchy(self, role_id: str, _seen: Optional[Set[str]] = None) -> Dict[str, Any]:
        """Nested view of a role and its live descendants."""
        seen = _seen if _seen is not None else set()
        if role_id in seen:
            raise ConfigurationError(
                "Role hierarchy contains a cycle",
                details={"role_id": role_id}
            )
        seen.add(role_id)

        role = await self.roles.find_by_id(role_id)
        if role is None or not role.is_live:
            raise NotFoundError("Role not found", details={"role_id": role_id})

        permissions = await self.permissions.find_by_role(role_id)
        children = [
            await self.get_role_hierarchy(child.role_id, seen)
            for child in await self.roles.find_children(role_id)
            if child.is_live
        ]

        return {
            "role_id": role.role_id,
            "name": role.name,
            "parent_id": role.parent_id,
            "permissions": sorted(p.name for p in permissions if p.is_live),
            "children": children,
        }
