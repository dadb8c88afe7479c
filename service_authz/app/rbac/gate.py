"""
Role and permission gate.
"""

from typing import List, Optional, Set, Tuple

from shared.logging import get_logger
from ..models import Principal, PrincipalRole
from .hierarchy import RoleHierarchyResolver


class PermissionGate:
    """Checks role (any-of) and permission (all-of) requirements."""

    def __init__(self, resolver: RoleHierarchyResolver):
        self.resolver = resolver
        self.logger = get_logger("authz.rbac.gate")

    async def check(
        self,
        principal: Optional[Principal],
        required_roles: Optional[List[str]] = None,
        required_permissions: Optional[List[str]] = None
    ) -> bool:
        """Check a principal against role and permission requirements."""
        if not required_roles and not required_permissions:
            return True

        if principal is None:
            return False

        held_roles = await self._held_roles(principal)

        if required_roles:
            held_names = {role.name for role, _ in held_roles}
            if not any(role in held_names for role in required_roles):
                self.logger.debug(
                    "Role requirement not met",
                    principal_id=principal.principal_id,
                    required_roles=required_roles
                )
                return False

        if required_permissions:
            effective = await self._effective_permissions(held_roles)
            missing = [name for name in required_permissions if name not in effective]
            if missing:
                self.logger.debug(
                    "Permission requirement not met",
                    principal_id=principal.principal_id,
                    missing=missing
                )
                return False

        return True

    async def effective_permissions(self, principal: Principal) -> Set[str]:
        """Directly attached permissions plus everything inherited through held roles."""
        return await self._effective_permissions(await self._held_roles(principal))

    async def _held_roles(self, principal: Principal) -> List[Tuple[PrincipalRole, bool]]:
        # Roles the store knows as inactive or deleted are dropped entirely;
        # roles it does not know keep only their claimed permissions
        held = []
        for role in principal.roles:
            stored = await self.resolver.roles.find_by_id(role.role_id)
            if stored is not None and not stored.is_live:
                continue
            held.append((role, stored is not None))
        return held

    async def _effective_permissions(self, held_roles: List[Tuple[PrincipalRole, bool]]) -> Set[str]:
        effective: Set[str] = set()
        for role, _ in held_roles:
            effective.update(role.permissions)
        effective |= await self.resolver.resolve_for_roles(
            role.role_id for role, known in held_roles if known
        )
        return effective
