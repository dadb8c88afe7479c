"""
Policy evaluation engine.
"""

from typing import Any, Optional

from shared.logging import get_logger
from ..models import Policy, PolicyEffect, RequestContext
from .conditions import (
    AttributeCondition, CompositeCondition, CompositeOperator, Condition,
    DefaultCondition, IpAllowlistCondition, OwnershipCondition, TimeCondition
)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality that never treats booleans as numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if type(left) is not type(right) and not (
        isinstance(left, (int, float)) and isinstance(right, (int, float))
    ):
        return False
    return left == right


class PolicyEvaluator:
    """Evaluates policies against a request context.

    Evaluation is synchronous and side-effect free; policies must already
    be loaded with their condition trees parsed.
    """

    def __init__(self):
        self.logger = get_logger("authz.policies.evaluator")

    def evaluate(self, policy: Optional[Policy], context: RequestContext) -> bool:
        """True only for a live ALLOW policy whose condition holds.

        DENY policies always come out false, whether their condition matched
        (explicit block) or not (no opinion).
        """
        if policy is None or not policy.is_live:
            return False

        matched = self.evaluate_condition(policy.condition, context)

        self.logger.debug(
            "Policy evaluated",
            policy=policy.name,
            effect=policy.effect.value,
            matched=matched
        )

        if policy.effect is PolicyEffect.DENY:
            return False

        return matched

    def evaluate_condition(self, condition: Condition, context: RequestContext) -> bool:
        """Evaluate one node of a condition tree."""
        if isinstance(condition, TimeCondition):
            return self._evaluate_time(condition, context)

        elif isinstance(condition, IpAllowlistCondition):
            if condition.allowed_ips is None or not context.ip:
                return True
            return context.ip in condition.allowed_ips

        elif isinstance(condition, AttributeCondition):
            return self._evaluate_attributes(condition, context)

        elif isinstance(condition, OwnershipCondition):
            return self._evaluate_ownership(condition, context)

        elif isinstance(condition, CompositeCondition):
            return self._evaluate_composite(condition, context)

        elif isinstance(condition, DefaultCondition):
            if condition.user_id is None:
                return True
            return context.principal is not None and context.principal.principal_id == condition.user_id

        self.logger.warning("Unknown condition node", node=type(condition).__name__)
        return False

    def _evaluate_time(self, condition: TimeCondition, context: RequestContext) -> bool:
        now = context.timestamp

        if condition.start_minutes is not None and condition.end_minutes is not None:
            current = now.hour * 60 + now.minute
            return condition.start_minutes <= current <= condition.end_minutes

        if condition.days_of_week is not None:
            # Sunday=0 .. Saturday=6
            return (now.weekday() + 1) % 7 in condition.days_of_week

        return True

    def _evaluate_attributes(self, condition: AttributeCondition, context: RequestContext) -> bool:
        if not condition.attributes:
            return True

        if context.principal is None:
            return False

        attributes = context.principal.attributes
        for key, expected in condition.attributes.items():
            if key not in attributes or not strict_equals(attributes[key], expected):
                return False

        return True

    def _evaluate_ownership(self, condition: OwnershipCondition, context: RequestContext) -> bool:
        if not condition.resource_field or context.principal is None:
            return False

        if condition.resource_field in context.body:
            owner_id = context.body[condition.resource_field]
        else:
            owner_id = context.params.get(condition.resource_field)

        return owner_id is not None and strict_equals(owner_id, context.principal.identity)

    def _evaluate_composite(self, condition: CompositeCondition, context: RequestContext) -> bool:
        if condition.operator is CompositeOperator.AND:
            return all(self.evaluate_condition(child, context) for child in condition.children)

        if condition.operator is CompositeOperator.OR:
            return any(self.evaluate_condition(child, context) for child in condition.children)

        # NOT carries exactly one child
        return not self.evaluate_condition(condition.children[0], context)
