"""
Shared fixtures for Authz service tests.
"""

import pytest

from service_authz.app.locks.key_locks import LocalKeyLocks
from service_authz.app.models import Permission, Principal, PrincipalRole, Role
from service_authz.app.persistence.memory import create_memory_stores
from service_authz.app.rbac.gate import PermissionGate
from service_authz.app.rbac.hierarchy import RoleHierarchyResolver
from service_authz.app.resources.acl import ResourceAclStore


ROLE_PERMISSIONS = {
    "r-admin": [
        "policy:delete", "user:update", "resource:grant", "resource:revoke", "resource:read", "role:read"
    ],
    "r-manager": ["policy:read", "user:read"],
    "r-viewer": ["user:read"],
}


@pytest.fixture
def stores():
    """In-memory stores seeded with admin <- manager and a standalone viewer role."""
    bundle = create_memory_stores()

    bundle.roles.add_role(Role(role_id="r-admin", name="admin"))
    bundle.roles.add_role(Role(role_id="r-manager", name="manager", parent_id="r-admin"))
    bundle.roles.add_role(Role(role_id="r-viewer", name="viewer"))

    names = sorted({name for names in ROLE_PERMISSIONS.values() for name in names})
    for name in names:
        resource, action = name.split(":")
        bundle.permissions.add_permission(Permission.create(f"p-{resource}-{action}", resource, action))

    for role_id, role_permissions in ROLE_PERMISSIONS.items():
        for name in role_permissions:
            bundle.permissions.assign(role_id, f"p-{name.replace(':', '-')}")

    return bundle


@pytest.fixture
def resolver(stores):
    return RoleHierarchyResolver(stores.roles, stores.permissions)


@pytest.fixture
def gate(resolver):
    return PermissionGate(resolver)


@pytest.fixture
def acl(stores):
    return ResourceAclStore(stores.grants, LocalKeyLocks())


def principal_with(principal_id: str, *roles: str, **attributes) -> Principal:
    """Principal holding the given seeded roles (by name) without claim permissions."""
    return Principal(
        principal_id=principal_id,
        roles=[PrincipalRole(role_id=f"r-{name}", name=name) for name in roles],
        attributes=attributes,
    )


def claims_for(principal_id: str, *roles: str) -> dict:
    """Authentication-layer claims for the given seeded roles."""
    return {
        "id": principal_id,
        "roles": [
            {"role": {"id": f"r-{name}", "name": name, "permissions": []}}
            for name in roles
        ],
    }
