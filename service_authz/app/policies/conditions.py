"""
Condition tree model for policies.

Policy conditions arrive as untyped JSON documents with a ``type``
discriminator. ``parse_condition`` turns a document into one of the
dataclasses below exactly once, so evaluation never has to probe for
field presence. Malformed documents raise ``ConfigurationError``.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from shared.errors import ConfigurationError


class CompositeOperator(str, Enum):
    """Boolean operators for composite conditions."""
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass(frozen=True)
class TimeCondition:
    """Time-of-day window or weekday set."""
    start_minutes: Optional[int] = None
    end_minutes: Optional[int] = None
    days_of_week: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True)
class IpAllowlistCondition:
    """Source IP must be one of the allowed addresses; an empty tuple allows none."""
    allowed_ips: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class AttributeCondition:
    """Every listed attribute must equal the principal's attribute."""
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OwnershipCondition:
    """Owner id found under ``resource_field`` must be the principal id."""
    resource_field: Optional[str] = None


@dataclass(frozen=True)
class CompositeCondition:
    """AND/OR over children; NOT negates its single child."""
    operator: CompositeOperator
    children: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class DefaultCondition:
    """Untyped or unrecognised document; optionally pinned to one principal."""
    user_id: Optional[str] = None


Condition = Union[
    TimeCondition,
    IpAllowlistCondition,
    AttributeCondition,
    OwnershipCondition,
    CompositeCondition,
    DefaultCondition,
]


def parse_time_of_day(value: Any) -> int:
    """Convert ``HH:MM`` to minutes since midnight."""
    if not isinstance(value, str):
        raise ConfigurationError("Time must be a HH:MM string", details={"value": value})

    parts = value.split(":")
    if len(parts) != 2 or not all(part.strip().isdigit() for part in parts):
        raise ConfigurationError("Time must be a HH:MM string", details={"value": value})

    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise ConfigurationError("Time out of range", details={"value": value})

    return hours * 60 + minutes


def _parse_time(document: Dict[str, Any]) -> TimeCondition:
    start = document.get("startTime")
    end = document.get("endTime")
    days = document.get("daysOfWeek")

    if start and end:
        return TimeCondition(
            start_minutes=parse_time_of_day(start),
            end_minutes=parse_time_of_day(end),
        )

    # An empty list is still a given weekday set and matches no day
    if days is not None:
        if not isinstance(days, list) or not all(isinstance(d, int) and 0 <= d <= 6 for d in days):
            raise ConfigurationError(
                "daysOfWeek must be a list of integers 0-6",
                details={"daysOfWeek": days}
            )
        return TimeCondition(days_of_week=tuple(days))

    return TimeCondition()


def _parse_ip(document: Dict[str, Any]) -> IpAllowlistCondition:
    allowed = document.get("allowedIps")
    if allowed is None:
        return IpAllowlistCondition()
    if not isinstance(allowed, list):
        raise ConfigurationError("allowedIps must be a list", details={"allowedIps": allowed})
    return IpAllowlistCondition(allowed_ips=tuple(str(ip) for ip in allowed))


def _parse_attribute(document: Dict[str, Any]) -> AttributeCondition:
    attributes = document.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise ConfigurationError("attributes must be an object", details={"attributes": attributes})
    return AttributeCondition(attributes=dict(attributes))


def _parse_composite(document: Dict[str, Any]) -> CompositeCondition:
    raw_operator = document.get("operator")
    try:
        operator = CompositeOperator(str(raw_operator).upper())
    except ValueError:
        raise ConfigurationError(
            "Unknown composite operator",
            details={"operator": raw_operator}
        )

    if operator is CompositeOperator.NOT:
        nested = document.get("condition")
        if nested is None:
            children = document.get("children") or document.get("conditions") or []
            if not isinstance(children, list) or len(children) != 1:
                raise ConfigurationError("NOT requires exactly one nested condition")
            nested = children[0]
        return CompositeCondition(operator=operator, children=(parse_condition(nested),))

    children = document.get("children")
    if children is None:
        children = document.get("conditions", [])
    if not isinstance(children, list):
        raise ConfigurationError(
            "Composite children must be a list",
            details={"operator": operator.value}
        )

    return CompositeCondition(
        operator=operator,
        children=tuple(parse_condition(child) for child in children),
    )


_PARSERS = {
    "time": _parse_time,
    "ip": _parse_ip,
    "attribute": _parse_attribute,
    "ownership": lambda document: OwnershipCondition(resource_field=document.get("resourceField") or None),
    "composite": _parse_composite,
}


def parse_condition(document: Any) -> Condition:
    """Parse a condition document (dict, JSON string or None)."""
    if document is None:
        return DefaultCondition()

    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as e:
            raise ConfigurationError("Invalid JSON format for conditions", details={"error": str(e)})
        if document is None:
            return DefaultCondition()

    if not isinstance(document, dict):
        raise ConfigurationError(
            "Condition must be a JSON object",
            details={"type": type(document).__name__}
        )

    parser = _PARSERS.get(document.get("type"))
    if parser is not None:
        return parser(document)

    user_id = document.get("userId")
    return DefaultCondition(user_id=str(user_id) if user_id else None)
