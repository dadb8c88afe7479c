"""
PostgreSQL persistence layer for the Authz service.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException, ServiceError
from ..models import EntityStatus, GrantKey, Permission, Policy, ResourceGrant, Role
from .base import GrantStore, PermissionStore, PolicyStore, RoleStore, StoreBundle


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS roles (
        role_id VARCHAR(255) PRIMARY KEY,
        name VARCHAR(255) NOT NULL UNIQUE,
        description TEXT,
        parent_id VARCHAR(255) REFERENCES roles(role_id),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMP WITH TIME ZONE,
        CHECK (parent_id IS NULL OR parent_id <> role_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS permissions (
        permission_id VARCHAR(255) PRIMARY KEY,
        name VARCHAR(255) NOT NULL UNIQUE,
        resource VARCHAR(100) NOT NULL,
        action VARCHAR(100) NOT NULL,
        description TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMP WITH TIME ZONE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS role_permissions (
        role_id VARCHAR(255) NOT NULL REFERENCES roles(role_id),
        permission_id VARCHAR(255) NOT NULL REFERENCES permissions(permission_id),
        PRIMARY KEY (role_id, permission_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS policies (
        name VARCHAR(255) PRIMARY KEY,
        description TEXT,
        effect VARCHAR(10) NOT NULL DEFAULT 'ALLOW',
        conditions JSONB,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMP WITH TIME ZONE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS resource_grants (
        principal_id VARCHAR(255) NOT NULL,
        resource_type VARCHAR(100) NOT NULL,
        resource_id VARCHAR(255) NOT NULL,
        actions TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMP WITH TIME ZONE,
        PRIMARY KEY (principal_id, resource_type, resource_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_roles_parent ON roles(parent_id);",
    "CREATE INDEX IF NOT EXISTS idx_role_permissions_role ON role_permissions(role_id);",
    "CREATE INDEX IF NOT EXISTS idx_grants_resource ON resource_grants(resource_type, resource_id);",
]


def _status(row) -> EntityStatus:
    return EntityStatus.DELETED if row["deleted_at"] is not None else EntityStatus.ACTIVE


class PostgreSQLPersistence:
    """Connection pool and schema management."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("authz.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)

    async def fetch(self, operation: str, query: str, *args) -> List[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            self.logger.error("Query failed", operation=operation, error=str(e))
            raise ServiceError(f"Store query failed: {operation}", details={"error": str(e)})

    async def fetchrow(self, operation: str, query: str, *args) -> Optional[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            self.logger.error("Query failed", operation=operation, error=str(e))
            raise ServiceError(f"Store query failed: {operation}", details={"error": str(e)})

    async def execute(self, operation: str, query: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except asyncpg.PostgresError as e:
            self.logger.error("Statement failed", operation=operation, error=str(e))
            raise ServiceError(f"Store statement failed: {operation}", details={"error": str(e)})

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False


class PostgresRoleStore(RoleStore):

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence

    async def find_by_id(self, role_id: str) -> Optional[Role]:
        row = await self.persistence.fetchrow(
            "role_by_id", "SELECT * FROM roles WHERE role_id = $1", role_id
        )
        return self._row_to_role(row) if row else None

    async def find_by_name(self, name: str) -> Optional[Role]:
        row = await self.persistence.fetchrow(
            "role_by_name", "SELECT * FROM roles WHERE name = $1", name
        )
        return self._row_to_role(row) if row else None

    async def find_children(self, role_id: str) -> List[Role]:
        rows = await self.persistence.fetch(
            "role_children", "SELECT * FROM roles WHERE parent_id = $1 ORDER BY name", role_id
        )
        return [self._row_to_role(row) for row in rows]

    def _row_to_role(self, row) -> Role:
        return Role(
            role_id=row["role_id"],
            name=row["name"],
            parent_id=row["parent_id"],
            description=row["description"],
            is_active=row["is_active"],
            status=_status(row),
        )


class PostgresPermissionStore(PermissionStore):

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence

    async def find_by_role(self, role_id: str) -> List[Permission]:
        rows = await self.persistence.fetch(
            "permissions_by_role",
            """
            SELECT p.* FROM permissions p
            JOIN role_permissions rp ON rp.permission_id = p.permission_id
            WHERE rp.role_id = $1
            ORDER BY p.name
            """,
            role_id
        )
        return [self._row_to_permission(row) for row in rows]

    async def find_by_name(self, name: str) -> Optional[Permission]:
        row = await self.persistence.fetchrow(
            "permission_by_name", "SELECT * FROM permissions WHERE name = $1", name
        )
        return self._row_to_permission(row) if row else None

    def _row_to_permission(self, row) -> Permission:
        return Permission(
            permission_id=row["permission_id"],
            name=row["name"],
            resource=row["resource"],
            action=row["action"],
            description=row["description"],
            is_active=row["is_active"],
            status=_status(row),
        )


class PostgresPolicyStore(PolicyStore):

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence

    async def find_by_name(self, name: str) -> Optional[Policy]:
        row = await self.persistence.fetchrow(
            "policy_by_name", "SELECT * FROM policies WHERE name = $1", name
        )
        if not row:
            return None

        # JSONB arrives as text; parsing raises ConfigurationError on bad documents
        return Policy.from_document(
            name=row["name"],
            effect=row["effect"],
            conditions=row["conditions"],
            description=row["description"],
            is_active=row["is_active"],
            status=_status(row),
        )


class PostgresGrantStore(GrantStore):

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence

    async def get(self, key: GrantKey) -> Optional[ResourceGrant]:
        row = await self.persistence.fetchrow(
            "grant_get",
            """
            SELECT * FROM resource_grants
            WHERE principal_id = $1 AND resource_type = $2 AND resource_id = $3
            """,
            key.principal_id, key.resource_type, key.resource_id
        )
        return self._row_to_grant(row) if row else None

    async def upsert(self, key: GrantKey, actions: Iterable[str]) -> ResourceGrant:
        # ON CONFLICT is the per-key serialization point across replicas
        row = await self.persistence.fetchrow(
            "grant_upsert",
            """
            INSERT INTO resource_grants (principal_id, resource_type, resource_id, actions)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (principal_id, resource_type, resource_id) DO UPDATE SET
                actions = EXCLUDED.actions,
                updated_at = NOW()
            RETURNING *
            """,
            key.principal_id, key.resource_type, key.resource_id, sorted(set(actions))
        )
        return self._row_to_grant(row)

    async def delete(self, key: GrantKey) -> bool:
        result = await self.persistence.execute(
            "grant_delete",
            """
            DELETE FROM resource_grants
            WHERE principal_id = $1 AND resource_type = $2 AND resource_id = $3
            """,
            key.principal_id, key.resource_type, key.resource_id
        )
        return result == "DELETE 1"

    async def list_for_principal(self, principal_id: str,
                                 resource_type: Optional[str] = None) -> List[ResourceGrant]:
        rows = await self.persistence.fetch(
            "grants_for_principal",
            """
            SELECT * FROM resource_grants
            WHERE principal_id = $1 AND deleted_at IS NULL
              AND ($2::VARCHAR IS NULL OR resource_type = $2)
            ORDER BY resource_type, resource_id
            """,
            principal_id, resource_type
        )
        return [self._row_to_grant(row) for row in rows]

    async def list_for_resource(self, resource_type: str, resource_id: str) -> List[ResourceGrant]:
        rows = await self.persistence.fetch(
            "grants_for_resource",
            """
            SELECT * FROM resource_grants
            WHERE resource_type = $1 AND resource_id = $2 AND deleted_at IS NULL
            ORDER BY principal_id
            """,
            resource_type, resource_id
        )
        return [self._row_to_grant(row) for row in rows]

    def _row_to_grant(self, row) -> ResourceGrant:
        return ResourceGrant(
            key=GrantKey(
                principal_id=row["principal_id"],
                resource_type=row["resource_type"],
                resource_id=row["resource_id"],
            ),
            actions=frozenset(row["actions"] or []),
            status=_status(row),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class PostgresStoreBundle(StoreBundle):
    """Store bundle sharing one connection pool."""
    persistence: Optional[PostgreSQLPersistence] = None

    async def start(self):
        await self.persistence.start()

    async def stop(self):
        await self.persistence.stop()

    async def health_check(self) -> bool:
        return await self.persistence.health_check()


def create_postgres_stores(dsn: str, min_size: int = 2, max_size: int = 10) -> PostgresStoreBundle:
    """Build PostgreSQL-backed stores over a shared pool."""
    persistence = PostgreSQLPersistence(dsn, min_size=min_size, max_size=max_size)
    return PostgresStoreBundle(
        roles=PostgresRoleStore(persistence),
        permissions=PostgresPermissionStore(persistence),
        policies=PostgresPolicyStore(persistence),
        grants=PostgresGrantStore(persistence),
        persistence=persistence,
    )
