"""
Store interfaces consumed by the decision engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..models import GrantKey, Permission, Policy, ResourceGrant, Role


class RoleStore(ABC):
    """Read access to roles."""

    @abstractmethod
    async def find_by_id(self, role_id: str) -> Optional[Role]:
        """Get a role by id, whatever its status."""

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Role]:
        """Get a role by its unique name."""

    @abstractmethod
    async def find_children(self, role_id: str) -> List[Role]:
        """Get roles whose parent is ``role_id``."""


class PermissionStore(ABC):
    """Read access to permissions and role-permission edges."""

    @abstractmethod
    async def find_by_role(self, role_id: str) -> List[Permission]:
        """Get permissions attached directly to a role."""

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Permission]:
        """Get a permission by canonical name."""


class PolicyStore(ABC):
    """Read access to policies."""

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Policy]:
        """Get a policy by its unique name."""


class GrantStore(ABC):
    """Resource grants keyed by (principal, resource type, resource id)."""

    @abstractmethod
    async def get(self, key: GrantKey) -> Optional[ResourceGrant]:
        """Get the grant stored under ``key``."""

    @abstractmethod
    async def upsert(self, key: GrantKey, actions: Iterable[str]) -> ResourceGrant:
        """Create the grant or replace its action set."""

    @abstractmethod
    async def delete(self, key: GrantKey) -> bool:
        """Delete the grant; False if nothing was stored."""

    @abstractmethod
    async def list_for_principal(self, principal_id: str,
                                 resource_type: Optional[str] = None) -> List[ResourceGrant]:
        """Live grants held by a principal."""

    @abstractmethod
    async def list_for_resource(self, resource_type: str, resource_id: str) -> List[ResourceGrant]:
        """Live grants on one resource."""


@dataclass
class StoreBundle:
    """The four stores the engine reads from."""
    roles: RoleStore
    permissions: PermissionStore
    policies: PolicyStore
    grants: GrantStore

    async def start(self):
        pass

    async def stop(self):
        pass

    async def health_check(self) -> bool:
        return True
