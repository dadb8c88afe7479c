"""
Unit tests for the PostgreSQL stores with a mocked connection pool.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg

from shared.errors import ConfigurationError, ServiceError
from service_authz.app.models import EntityStatus, GrantKey, PolicyEffect
from service_authz.app.persistence.postgres import (
    PostgreSQLPersistence, PostgresGrantStore, PostgresPolicyStore, PostgresRoleStore,
    create_postgres_stores
)
from service_authz.app.policies.conditions import OwnershipCondition


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestPostgresStores:
    """Test cases for the PostgreSQL store implementations."""

    @pytest.fixture
    def persistence(self):
        persistence = MagicMock(spec=PostgreSQLPersistence)
        persistence.fetch = AsyncMock(return_value=[])
        persistence.fetchrow = AsyncMock(return_value=None)
        persistence.execute = AsyncMock(return_value="DELETE 0")
        return persistence

    @pytest.mark.asyncio
    async def test_role_row_mapping(self, persistence):
        persistence.fetchrow.return_value = {
            "role_id": "r-manager", "name": "manager", "parent_id": "r-admin",
            "description": None, "is_active": True, "deleted_at": NOW,
        }

        role = await PostgresRoleStore(persistence).find_by_id("r-manager")

        assert role.parent_id == "r-admin"
        assert role.status is EntityStatus.DELETED
        assert role.is_live is False

    @pytest.mark.asyncio
    async def test_missing_role(self, persistence):
        assert await PostgresRoleStore(persistence).find_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_policy_conditions_parsed_from_json_text(self, persistence):
        persistence.fetchrow.return_value = {
            "name": "owner-only", "effect": "allow", "description": None, "is_active": True,
            "deleted_at": None, "conditions": '{"type": "ownership", "resourceField": "ownerId"}',
        }

        policy = await PostgresPolicyStore(persistence).find_by_name("owner-only")

        assert policy.effect is PolicyEffect.ALLOW
        assert policy.condition == OwnershipCondition(resource_field="ownerId")

    @pytest.mark.asyncio
    async def test_malformed_policy_document(self, persistence):
        persistence.fetchrow.return_value = {
            "name": "broken", "effect": "ALLOW", "description": None, "is_active": True,
            "deleted_at": None, "conditions": "{broken",
        }

        with pytest.raises(ConfigurationError):
            await PostgresPolicyStore(persistence).find_by_name("broken")

    @pytest.mark.asyncio
    async def test_grant_upsert_sends_sorted_actions(self, persistence):
        persistence.fetchrow.return_value = {
            "principal_id": "u1", "resource_type": "doc", "resource_id": "d1",
            "actions": ["read", "write"], "created_at": NOW, "updated_at": NOW, "deleted_at": None,
        }

        grant = await PostgresGrantStore(persistence).upsert(GrantKey("u1", "doc", "d1"), ["write", "read", "read"])

        args = persistence.fetchrow.call_args[0]
        assert args[0] == "grant_upsert"
        assert "ON CONFLICT" in args[1]
        assert args[2:] == ("u1", "doc", "d1", ["read", "write"])
        assert grant.actions == frozenset({"read", "write"})
        assert grant.is_live is True

    @pytest.mark.asyncio
    async def test_grant_delete_result(self, persistence):
        store = PostgresGrantStore(persistence)

        assert await store.delete(GrantKey("u1", "doc", "d1")) is False

        persistence.execute.return_value = "DELETE 1"
        assert await store.delete(GrantKey("u1", "doc", "d1")) is True

    @pytest.mark.asyncio
    async def test_query_errors_become_service_errors(self):
        persistence = PostgreSQLPersistence("postgres://localhost/authz")
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=asyncpg.PostgresError("relation does not exist"))
        acquire = MagicMock()
        acquire.__aenter__ = AsyncMock(return_value=conn)
        acquire.__aexit__ = AsyncMock(return_value=False)
        persistence.pool = MagicMock()
        persistence.pool.acquire.return_value = acquire

        with pytest.raises(ServiceError):
            await PostgresGrantStore(persistence).get(GrantKey("u1", "doc", "d1"))

    def test_bundle_shares_one_pool(self):
        bundle = create_postgres_stores("postgres://localhost/authz", min_size=1, max_size=4)

        assert bundle.roles.persistence is bundle.persistence
        assert bundle.grants.persistence is bundle.persistence
        assert bundle.persistence.max_size == 4
