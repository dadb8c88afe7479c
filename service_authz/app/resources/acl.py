"""
Per-resource access control lists.
"""

from typing import Iterable, List, Optional

from shared.logging import get_logger
from shared.errors import ConflictError, NotFoundError, ValidationError
from shared.metrics import MetricsCollector
from ..locks.key_locks import KeyLockProvider, LocalKeyLocks
from ..models import GrantKey, ResourceGrant
from ..persistence.base import GrantStore


def _normalize_actions(actions: Iterable[str]) -> List[str]:
    if isinstance(actions, str):
        raise ValidationError("Actions must be a list", details={"actions": actions})
    normalized = sorted({action.strip() for action in actions if action and action.strip()})
    return normalized


class ResourceAclStore:
    """Grants, revokes, delegates and checks per-resource action sets.

    A grant is the complete action set for its key: every write replaces
    the stored set rather than merging into it. Writes to one key are
    serialized through the lock provider.
    """

    def __init__(self, grants: GrantStore, locks: Optional[KeyLockProvider] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.grants = grants
        self.locks = locks or LocalKeyLocks()
        self.metrics = metrics
        self.logger = get_logger("authz.resources.acl")

    async def grant(self, principal_id: str, resource_type: str, resource_id: str,
                    actions: Iterable[str]) -> ResourceGrant:
        """Create the grant or replace its action set."""
        key = GrantKey(principal_id, resource_type, resource_id)
        normalized = _normalize_actions(actions)

        async with self.locks.hold(str(key)):
            grant = await self.grants.upsert(key, normalized)

        self._record("grant")
        self.logger.info("Resource grant written", key=str(key), actions=normalized)
        return grant

    async def update_actions(self, principal_id: str, resource_type: str, resource_id: str,
                             actions: Iterable[str]) -> ResourceGrant:
        """Replace the action set of an existing grant."""
        key = GrantKey(principal_id, resource_type, resource_id)
        normalized = _normalize_actions(actions)

        async with self.locks.hold(str(key)):
            if await self.grants.get(key) is None:
                raise NotFoundError("Resource permission not found", details={"key": str(key)})
            grant = await self.grants.upsert(key, normalized)

        self._record("update")
        self.logger.info("Resource grant updated", key=str(key), actions=normalized)
        return grant

    async def revoke(self, principal_id: str, resource_type: str, resource_id: str) -> None:
        """Delete the grant."""
        key = GrantKey(principal_id, resource_type, resource_id)

        async with self.locks.hold(str(key)):
            if not await self.grants.delete(key):
                raise NotFoundError("Resource permission not found", details={"key": str(key)})

        self._record("revoke")
        self.logger.info("Resource grant revoked", key=str(key))

    async def check_access(self, principal_id: str, resource_type: str, resource_id: str,
                           action: str) -> bool:
        """Whether the live grant for the key contains ``action``."""
        grant = await self.grants.get(GrantKey(principal_id, resource_type, resource_id))
        if grant is None or not grant.is_live:
            return False
        return action in grant.actions

    async def delegate(self, from_principal_id: str, to_principal_id: str, resource_type: str,
                       resource_id: str, actions: Iterable[str]) -> ResourceGrant:
        """Hand a subset of one principal's actions to another.

        The recipient's grant on the same key is replaced, not merged.
        """
        source = GrantKey(from_principal_id, resource_type, resource_id)
        target = GrantKey(to_principal_id, resource_type, resource_id)
        normalized = _normalize_actions(actions)

        async with self.locks.hold(str(source), str(target)):
            source_grant = await self.grants.get(source)
            if source_grant is None or not source_grant.is_live:
                raise NotFoundError(
                    "You do not have permissions to delegate",
                    details={"key": str(source)}
                )

            unavailable = [action for action in normalized if action not in source_grant.actions]
            if unavailable:
                raise ConflictError(
                    f"You cannot delegate actions: {', '.join(unavailable)}",
                    details={"unavailable_actions": unavailable}
                )

            grant = await self.grants.upsert(target, normalized)

        self._record("delegate")
        self.logger.info(
            "Resource grant delegated",
            source=str(source),
            target=str(target),
            actions=normalized
        )
        return grant

    async def list_principal_grants(self, principal_id: str,
                                    resource_type: Optional[str] = None) -> List[ResourceGrant]:
        return await self.grants.list_for_principal(principal_id, resource_type)

    async def list_resource_grants(self, resource_type: str, resource_id: str) -> List[ResourceGrant]:
        return await self.grants.list_for_resource(resource_type, resource_id)

    def _record(self, operation: str):
        if self.metrics:
            self.metrics.record_grant_mutation(operation)
