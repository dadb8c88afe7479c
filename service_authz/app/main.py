"""
Authz service: access decisions and resource grants.
"""

import json
from typing import Any, Dict, List, Optional

from fastapi import Depends, Query, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import (
    AuthenticationError, AuthorizationError, ConfigurationError, ValidationError
)

from .context.extractor import HttpEnvelope, RequestContextExtractor, envelope_from_payload
from .decision.coordinator import AccessDecisionCoordinator
from .decision.registry import RequirementRegistry
from .locks.key_locks import KeyLockProvider, LocalKeyLocks, RedisKeyLocks
from .models import (
    CheckAccessRequest, CheckAccessResponse, DecisionReason, DecisionRequest,
    DecisionResponse, DelegateRequest, EffectivePermissionsResponse, GrantRequest,
    GrantResponse, Principal
)
from .persistence.base import StoreBundle
from .persistence.memory import create_memory_stores
from .persistence.postgres import create_postgres_stores
from .policies.evaluator import PolicyEvaluator
from .rbac.gate import PermissionGate
from .rbac.hierarchy import RoleHierarchyResolver
from .resources.acl import ResourceAclStore


PRINCIPAL_HEADER = "X-Principal"


def build_stores(config: ServiceConfig) -> StoreBundle:
    """Store bundle for the configured backend."""
    if config.store_backend == "memory":
        return create_memory_stores()
    if config.store_backend == "postgres":
        return create_postgres_stores(
            config.postgres_dsn,
            min_size=config.postgres_min_pool,
            max_size=config.postgres_max_pool
        )
    raise ConfigurationError(
        f"Unknown store backend: {config.store_backend}",
        details={"store_backend": config.store_backend}
    )


def build_locks(config: ServiceConfig) -> KeyLockProvider:
    """Grant key lock provider for the configured backend."""
    if config.lock_backend == "local":
        return LocalKeyLocks()
    if config.lock_backend == "redis":
        return RedisKeyLocks(config.redis_url, timeout=config.lock_timeout_seconds)
    raise ConfigurationError(
        f"Unknown lock backend: {config.lock_backend}",
        details={"lock_backend": config.lock_backend}
    )


class AuthzService(BaseService):
    """Authz service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 stores: Optional[StoreBundle] = None,
                 locks: Optional[KeyLockProvider] = None):
        super().__init__("authz", 8012, config)

        # Initialize components
        self.stores = stores or build_stores(self.config)
        self.locks = locks or build_locks(self.config)

        self.registry = RequirementRegistry()
        if self.config.requirements_file:
            self.registry.load_file(self.config.requirements_file)

        self.extractor = RequestContextExtractor()
        self.resolver = RoleHierarchyResolver(self.stores.roles, self.stores.permissions)
        self.gate = PermissionGate(self.resolver)
        self.evaluator = PolicyEvaluator()
        self.acl = ResourceAclStore(self.stores.grants, self.locks, self.metrics)
        self.coordinator = AccessDecisionCoordinator(
            extractor=self.extractor,
            gate=self.gate,
            evaluator=self.evaluator,
            policies=self.stores.policies,
            acl=self.acl,
            registry=self.registry,
            metrics=self.metrics
        )

        self._setup_authz_routes()

    def authorize(self, operation: str):
        """Route dependency enforcing a registered operation's requirement.

        Resolves to the acting principal on permit; denials raise and are
        rendered by the shared exception handlers.
        """

        async def dependency(request: Request) -> Optional[Principal]:
            envelope = await self._http_envelope(request)
            decision = await self.coordinator.decide_operation(envelope, operation)

            if decision.allowed:
                return self.extractor.extract(envelope).principal

            details = {"operation": operation, "reason": decision.reason.value}
            if decision.error_code:
                details["error_code"] = decision.error_code

            if decision.reason is DecisionReason.UNAUTHENTICATED:
                raise AuthenticationError("Authentication required", details=details)
            raise AuthorizationError("Access denied", details=details)

        return dependency

    async def _http_envelope(self, request: Request) -> HttpEnvelope:
        user = getattr(request.state, "principal", None)
        if user is None:
            raw = request.headers.get(PRINCIPAL_HEADER)
            if raw:
                try:
                    user = json.loads(raw)
                except json.JSONDecodeError:
                    raise AuthenticationError(f"Malformed {PRINCIPAL_HEADER} header")

        body: Dict[str, Any] = {}
        if request.method in ("POST", "PUT", "PATCH"):
            try:
                payload = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                payload = None
            if isinstance(payload, dict):
                body = payload

        return HttpEnvelope(
            user=user,
            ip=request.client.host if request.client else None,
            body=body,
            params=dict(request.path_params),
            headers=dict(request.headers),
        )

    def _setup_authz_routes(self):
        """Set up authz-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "authz",
                "message": "Access decision engine - Authz Service",
                "version": "1.0.0",
                "capabilities": ["rbac", "policies", "resource_acl"],
                "operations": self.registry.operations
            }

        @self.app.post("/authz/decide", response_model=DecisionResponse)
        async def decide(request: DecisionRequest):
            """Decide one call described by a transport-tagged envelope."""
            envelope = envelope_from_payload(request.envelope)

            if request.operation:
                decision = await self.coordinator.decide_operation(envelope, request.operation)
            elif request.requirement is not None:
                decision = await self.coordinator.decide(envelope, request.requirement.to_requirement())
            else:
                raise ValidationError("Either operation or requirement is required")

            return DecisionResponse(
                allowed=decision.allowed,
                reason=decision.reason,
                error_code=decision.error_code,
                detail=decision.detail
            )

        @self.app.get("/authz/roles/{role_id}/permissions", response_model=EffectivePermissionsResponse)
        async def get_effective_permissions(
            role_id: str,
            principal: Optional[Principal] = Depends(self.authorize("roles.read"))
        ):
            """Effective permissions of a role, inherited ones included."""
            permissions = await self.resolver.resolve_effective_permissions(role_id)
            return EffectivePermissionsResponse(role_id=role_id, permissions=sorted(permissions))

        @self.app.get("/authz/roles/{role_id}/hierarchy")
        async def get_role_hierarchy(
            role_id: str,
            principal: Optional[Principal] = Depends(self.authorize("roles.read"))
        ):
            """A role and its live descendants."""
            return await self.resolver.get_role_hierarchy(role_id)

        @self.app.post("/authz/resources/check-access", response_model=CheckAccessResponse)
        async def check_access(
            request: CheckAccessRequest,
            principal: Optional[Principal] = Depends(self.authorize("resources.read"))
        ):
            """Check one action on one resource."""
            allowed = await self.acl.check_access(
                request.principal_id,
                request.resource_type,
                request.resource_id,
                request.action
            )
            return CheckAccessResponse(allowed=allowed)

        @self.app.post("/authz/resources/grant", response_model=GrantResponse)
        async def grant_resource(
            request: GrantRequest,
            principal: Optional[Principal] = Depends(self.authorize("resources.grant"))
        ):
            """Grant a principal the complete action set on a resource."""
            grant = await self.acl.grant(
                request.principal_id,
                request.resource_type,
                request.resource_id,
                request.actions
            )
            return GrantResponse.from_grant(grant)

        @self.app.post("/authz/resources/delegate", response_model=GrantResponse)
        async def delegate_resource(
            request: DelegateRequest,
            principal: Optional[Principal] = Depends(self.authorize("resources.delegate"))
        ):
            """Hand a subset of the caller's actions on a resource to another principal."""
            caller_id = principal.principal_id if principal else None
            from_principal_id = request.from_principal_id or caller_id
            if from_principal_id is None or from_principal_id != caller_id:
                raise AuthorizationError(
                    "Only the holder of a grant can delegate it",
                    details={"from_principal_id": request.from_principal_id}
                )

            grant = await self.acl.delegate(
                from_principal_id,
                request.to_principal_id,
                request.resource_type,
                request.resource_id,
                request.actions
            )
            return GrantResponse.from_grant(grant)

        @self.app.delete("/authz/resources/{principal_id}/{resource_type}/{resource_id}")
        async def revoke_resource(
            principal_id: str,
            resource_type: str,
            resource_id: str,
            principal: Optional[Principal] = Depends(self.authorize("resources.revoke"))
        ):
            """Revoke a principal's grant on a resource."""
            await self.acl.revoke(principal_id, resource_type, resource_id)
            return {"success": True, "message": "Resource permission revoked"}

        @self.app.get("/authz/resources/principal/{principal_id}", response_model=List[GrantResponse])
        async def list_principal_grants(
            principal_id: str,
            resource_type: Optional[str] = Query(None, description="Filter by resource type"),
            principal: Optional[Principal] = Depends(self.authorize("resources.read"))
        ):
            """Live grants held by a principal."""
            grants = await self.acl.list_principal_grants(principal_id, resource_type)
            return [GrantResponse.from_grant(grant) for grant in grants]

        @self.app.get("/authz/resources/{resource_type}/{resource_id}", response_model=List[GrantResponse])
        async def list_resource_grants(
            resource_type: str,
            resource_id: str,
            principal: Optional[Principal] = Depends(self.authorize("resources.read"))
        ):
            """Live grants on a resource."""
            grants = await self.acl.list_resource_grants(resource_type, resource_id)
            return [GrantResponse.from_grant(grant) for grant in grants]

    async def _check_dependencies(self):
        """Check authz service dependencies."""
        dependencies = {}

        try:
            if await self.stores.health_check():
                dependencies[self.config.store_backend] = "ok"
            else:
                dependencies[self.config.store_backend] = "error"
        except Exception:
            dependencies[self.config.store_backend] = "error"

        try:
            if await self.locks.health_check():
                dependencies[f"{self.config.lock_backend}_locks"] = "ok"
            else:
                dependencies[f"{self.config.lock_backend}_locks"] = "error"
        except Exception:
            dependencies[f"{self.config.lock_backend}_locks"] = "error"

        return dependencies

    async def start(self):
        """Start authz service components."""
        await self.stores.start()
        await self.locks.start()

        self.logger.info(
            "Authz service started",
            store_backend=self.config.store_backend,
            lock_backend=self.config.lock_backend,
            operations=len(self.registry.operations)
        )

    async def stop(self):
        """Stop authz service components."""
        await self.locks.stop()
        await self.stores.stop()

        self.logger.info("Authz service stopped")


def create_app():
    """Create authz service application."""
    service = AuthzService()
    return service.app


if __name__ == "__main__":
    service = AuthzService()
    service.run()
