"""
Access decision orchestration.
"""

import time
from typing import Any, Optional

from shared.logging import get_logger, set_decision_context
from shared.errors import AccessLayerException
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation
from ..context.extractor import RequestContextExtractor
from ..models import Decision, DecisionReason, RequestContext, Requirement, ResourceRequirement
from ..persistence.base import PolicyStore
from ..policies.evaluator import PolicyEvaluator
from ..rbac.gate import PermissionGate
from ..resources.acl import ResourceAclStore
from .registry import RequirementRegistry


class AccessDecisionCoordinator:
    """Combines RBAC, policies and resource ACLs into one fail-closed decision.

    Stages run in a fixed order and stop at the first failure:

    1. extract the request context from the transport envelope
    2. authentication (UNAUTHENTICATED)
    3. roles and permissions (FORBIDDEN)
    4. named policies, all of which must allow (POLICY_REJECTED)
    5. resource ACL (RESOURCE_ACCESS_DENIED)

    An error raised inside any stage denies with that stage's reason; a
    principal that cannot be extracted counts as unauthenticated.
    """

    def __init__(
        self,
        extractor: RequestContextExtractor,
        gate: PermissionGate,
        evaluator: PolicyEvaluator,
        policies: PolicyStore,
        acl: ResourceAclStore,
        registry: Optional[RequirementRegistry] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.extractor = extractor
        self.gate = gate
        self.evaluator = evaluator
        self.policies = policies
        self.acl = acl
        self.registry = registry or RequirementRegistry()
        self.metrics = metrics
        self.logger = get_logger("authz.decision")

    async def decide_operation(self, envelope: Any, operation: str) -> Decision:
        """Decide for a registered operation id."""
        set_decision_context(operation=operation)
        try:
            requirement = self.registry.requirement_for(operation)
        except AccessLayerException as e:
            self.logger.error("Unknown operation", operation=operation, error=e.message)
            decision = Decision.deny(DecisionReason.FORBIDDEN, error_code=e.code, detail=e.message)
            self._record(decision, 0.0)
            return decision

        return await self.decide(envelope, requirement)

    async def decide(self, envelope: Any, requirement: Requirement) -> Decision:
        """Run every stage of the pipeline for one call."""
        start_time = time.time()

        with trace_operation("authz.decide", transport=type(envelope).__name__) as span:
            try:
                context = self.extractor.extract(envelope)
            except Exception as e:
                decision = self._deny_on_error(DecisionReason.UNAUTHENTICATED, e)
            else:
                if context.principal is not None:
                    set_decision_context(principal_id=context.principal.principal_id)
                decision = await self._decide(context, requirement)

            span.set_attribute("authz.allowed", decision.allowed)
            span.set_attribute("authz.reason", decision.reason.value)

        duration = time.time() - start_time
        self._record(decision, duration)

        if decision.allowed:
            self.logger.debug("Access permitted", duration_ms=round(duration * 1000, 2))
        else:
            self.logger.info(
                "Access denied",
                reason=decision.reason.value,
                error_code=decision.error_code,
                detail=decision.detail
            )

        return decision

    async def _decide(self, context: RequestContext, requirement: Requirement) -> Decision:
        if requirement.require_authentication and context.principal is None:
            return Decision.deny(DecisionReason.UNAUTHENTICATED)

        try:
            if not await self.gate.check(
                context.principal,
                required_roles=requirement.roles,
                required_permissions=requirement.permissions
            ):
                return Decision.deny(DecisionReason.FORBIDDEN)
        except Exception as e:
            return self._deny_on_error(DecisionReason.FORBIDDEN, e)

        try:
            for name in requirement.policies:
                policy = await self.policies.find_by_name(name)
                if not self.evaluator.evaluate(policy, context):
                    return Decision.deny(DecisionReason.POLICY_REJECTED, detail=name)
        except Exception as e:
            return self._deny_on_error(DecisionReason.POLICY_REJECTED, e)

        if requirement.resource is not None:
            try:
                if not await self._check_resource(context, requirement.resource):
                    return Decision.deny(DecisionReason.RESOURCE_ACCESS_DENIED)
            except Exception as e:
                return self._deny_on_error(DecisionReason.RESOURCE_ACCESS_DENIED, e)

        return Decision.permit()

    async def _check_resource(self, context: RequestContext, resource: ResourceRequirement) -> bool:
        if context.principal is None:
            return False

        resource_id = resource_id_for(context, resource)
        if resource_id is None:
            self.logger.info(
                "Resource id not resolvable",
                resource_type=resource.resource_type,
                id_field=resource.id_field
            )
            return False

        return await self.acl.check_access(
            context.principal.principal_id,
            resource.resource_type,
            resource_id,
            resource.action
        )

    def _deny_on_error(self, reason: DecisionReason, error: Exception) -> Decision:
        if isinstance(error, AccessLayerException):
            error_code, detail = error.code, error.message
        else:
            error_code, detail = "INTERNAL_ERROR", str(error)

        self.logger.error(
            "Decision stage failed",
            stage=reason.value,
            error_code=error_code,
            error=detail,
            exc_info=not isinstance(error, AccessLayerException)
        )
        if self.metrics:
            self.metrics.record_error(error_code)

        return Decision.deny(reason, error_code=error_code, detail=detail)

    def _record(self, decision: Decision, duration: float):
        if self.metrics:
            self.metrics.record_decision(decision.reason.value, duration)


def resource_id_for(context: RequestContext, resource: ResourceRequirement) -> Optional[str]:
    """Literal id first, then path params, then body."""
    if resource.resource_id:
        return resource.resource_id

    value = context.params.get(resource.id_field)
    if value is None:
        value = context.body.get(resource.id_field)

    return str(value) if value is not None else None
