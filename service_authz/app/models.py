"""
Data models for the Authz service.
"""

from typing import Dict, Any, Optional, List, Set, FrozenSet, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from shared.errors import ValidationError
from .policies.conditions import Condition, DefaultCondition, parse_condition


class EntityStatus(str, Enum):
    """Soft-delete status of stored entities."""
    ACTIVE = "active"
    DELETED = "deleted"


class PolicyEffect(str, Enum):
    """Policy effect types."""
    ALLOW = "ALLOW"
    DENY = "DENY"


class DecisionReason(str, Enum):
    """Outcome of an access decision."""
    PERMIT = "permit"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    POLICY_REJECTED = "policy_rejected"
    RESOURCE_ACCESS_DENIED = "resource_access_denied"


def permission_name(resource: str, action: str) -> str:
    """Canonical ``resource:action`` permission name."""
    resource = (resource or "").strip().lower()
    action = (action or "").strip().lower()
    if not resource or not action:
        raise ValidationError(
            "Permission resource and action are required",
            details={"resource": resource, "action": action}
        )
    if ":" in resource or ":" in action:
        raise ValidationError(
            "Permission tokens must not contain ':'",
            details={"resource": resource, "action": action}
        )
    return f"{resource}:{action}"


@dataclass
class Role:
    """Role with an optional parent."""
    role_id: str
    name: str
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    status: EntityStatus = EntityStatus.ACTIVE

    @property
    def is_live(self) -> bool:
        return self.is_active and self.status is EntityStatus.ACTIVE


@dataclass
class Permission:
    """Permission named ``resource:action``."""
    permission_id: str
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    is_active: bool = True
    status: EntityStatus = EntityStatus.ACTIVE

    @classmethod
    def create(cls, permission_id: str, resource: str, action: str,
               description: Optional[str] = None) -> "Permission":
        name = permission_name(resource, action)
        resource, action = name.split(":")
        return cls(
            permission_id=permission_id,
            name=name,
            resource=resource,
            action=action,
            description=description,
        )

    @property
    def is_live(self) -> bool:
        return self.is_active and self.status is EntityStatus.ACTIVE


@dataclass
class Policy:
    """Named policy with an effect and a parsed condition tree."""
    name: str
    effect: PolicyEffect = PolicyEffect.ALLOW
    condition: Condition = field(default_factory=DefaultCondition)
    description: Optional[str] = None
    is_active: bool = True
    status: EntityStatus = EntityStatus.ACTIVE

    @classmethod
    def from_document(cls, name: str, effect: Any, conditions: Any, **kwargs) -> "Policy":
        """Build a policy from stored fields, parsing the condition document."""
        return cls(
            name=name,
            effect=PolicyEffect(str(effect).upper()),
            condition=parse_condition(conditions),
            **kwargs
        )

    @property
    def is_live(self) -> bool:
        return self.is_active and self.status is EntityStatus.ACTIVE


@dataclass(frozen=True, order=True)
class GrantKey:
    """Natural key of a resource grant."""
    principal_id: str
    resource_type: str
    resource_id: str

    def __str__(self) -> str:
        return f"{self.principal_id}:{self.resource_type}:{self.resource_id}"


@dataclass
class ResourceGrant:
    """Complete action set one principal holds on one resource."""
    key: GrantKey
    actions: FrozenSet[str] = frozenset()
    status: EntityStatus = EntityStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_live(self) -> bool:
        return self.status is EntityStatus.ACTIVE


@dataclass(frozen=True)
class PrincipalRole:
    """Role held by a principal, with the permissions attached directly to it."""
    role_id: str
    name: str
    permissions: FrozenSet[str] = frozenset()


@dataclass
class Principal:
    """Authenticated caller as handed over by the authentication layer."""
    principal_id: str
    roles: List[PrincipalRole] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    # Id exactly as it appeared in the claims; ownership compares against it
    claim_id: Any = None

    @property
    def identity(self) -> Any:
        return self.principal_id if self.claim_id is None else self.claim_id

    @property
    def role_ids(self) -> Set[str]:
        return {role.role_id for role in self.roles}

    @property
    def role_names(self) -> Set[str]:
        return {role.name for role in self.roles}

    @property
    def direct_permissions(self) -> Set[str]:
        permissions: Set[str] = set()
        for role in self.roles:
            permissions.update(role.permissions)
        return permissions

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Principal":
        """Flatten the nested ``roles[].role.permissions[].permission.name`` shape.

        Raises ``ValidationError`` when the claims are not shaped like a principal.
        """
        if not isinstance(claims, dict):
            raise ValidationError(
                "Principal claims must be an object",
                details={"type": type(claims).__name__}
            )

        principal_id = claims.get("id") or claims.get("userId") or claims.get("user_id")
        if not principal_id or isinstance(principal_id, (dict, list, bool)):
            raise ValidationError("Principal claims carry no id")

        raw_roles = claims.get("roles") or []
        if not isinstance(raw_roles, list):
            raise ValidationError("Principal roles must be a list", details={"type": type(raw_roles).__name__})
        roles = [_role_from_claim(entry) for entry in raw_roles]

        extra = claims.get("attributes") or {}
        if not isinstance(extra, dict):
            raise ValidationError("Principal attributes must be an object")

        attributes = {
            key: value for key, value in claims.items()
            if key not in ("roles", "attributes", "isActive", "is_active")
        }
        attributes.update(extra)

        is_active = claims.get("isActive", claims.get("is_active", True))

        return cls(
            principal_id=str(principal_id),
            roles=roles,
            attributes=attributes,
            is_active=bool(is_active),
            claim_id=principal_id,
        )


def _role_from_claim(entry: Any) -> PrincipalRole:
    if isinstance(entry, str):
        return PrincipalRole(role_id=entry, name=entry)

    if not isinstance(entry, dict):
        raise ValidationError("Role claim must be a name or an object", details={"type": type(entry).__name__})

    role = entry.get("role") or entry
    if not isinstance(role, dict):
        raise ValidationError("Role claim must be a name or an object", details={"type": type(role).__name__})

    role_id = role.get("id") or entry.get("roleId") or role.get("name")
    if not role_id:
        raise ValidationError("Role claim carries no id or name")

    permissions = set()
    for role_permission in role.get("permissions") or []:
        permission = role_permission.get("permission") if isinstance(role_permission, dict) else None
        if isinstance(permission, dict) and permission.get("name"):
            permissions.add(permission["name"])
        elif isinstance(role_permission, str):
            permissions.add(role_permission)

    return PrincipalRole(
        role_id=str(role_id),
        name=role.get("name") or str(role_id),
        permissions=frozenset(permissions),
    )


@dataclass
class RequestContext:
    """Canonical per-call context, independent of transport."""
    principal: Optional[Principal] = None
    ip: Optional[str] = None
    body: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    transport: Optional[str] = None


@dataclass(frozen=True)
class ResourceRequirement:
    """Resource ACL check; the id is literal or read from the request."""
    resource_type: str
    action: str
    resource_id: Optional[str] = None
    id_field: str = "resourceId"


@dataclass(frozen=True)
class Requirement:
    """What a principal must satisfy for one operation."""
    roles: Optional[List[str]] = None
    permissions: Optional[List[str]] = None
    policies: List[str] = field(default_factory=list)
    resource: Optional[ResourceRequirement] = None
    require_authentication: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Requirement":
        """Build from a JSON table entry (camelCase or snake_case keys)."""
        resource = data.get("resource")
        return cls(
            roles=_optional_list(data.get("roles", data.get("requiredRoles"))),
            permissions=_optional_list(data.get("permissions", data.get("requiredPermissions"))),
            policies=list(data.get("policies") or []),
            resource=ResourceRequirement(
                resource_type=resource.get("resourceType", resource.get("resource_type")),
                action=resource["action"],
                resource_id=resource.get("resourceId", resource.get("resource_id")),
                id_field=resource.get("idField", resource.get("id_field", "resourceId")),
            ) if resource else None,
            require_authentication=data.get(
                "requireAuthentication", data.get("require_authentication", True)
            ),
        )


def _optional_list(value: Optional[Iterable[str]]) -> Optional[List[str]]:
    return list(value) if value else None


@dataclass(frozen=True)
class Decision:
    """Permit, or deny with a reason."""
    allowed: bool
    reason: DecisionReason
    error_code: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def permit(cls) -> "Decision":
        return cls(allowed=True, reason=DecisionReason.PERMIT)

    @classmethod
    def deny(cls, reason: DecisionReason, error_code: Optional[str] = None,
             detail: Optional[str] = None) -> "Decision":
        return cls(allowed=False, reason=reason, error_code=error_code, detail=detail)


class ResourceRequirementModel(BaseModel):
    """Resource part of an inline requirement."""
    resource_type: str = Field(..., description="Resource type")
    action: str = Field(..., description="Action to perform")
    resource_id: Optional[str] = Field(None, description="Literal resource id")
    id_field: str = Field("resourceId", description="Body/param field holding the resource id")


class RequirementModel(BaseModel):
    """Inline requirement for a decision request."""
    roles: Optional[List[str]] = Field(None, description="Any-of role names")
    permissions: Optional[List[str]] = Field(None, description="All-of permission names")
    policies: List[str] = Field(default_factory=list, description="Policies that must all allow")
    resource: Optional[ResourceRequirementModel] = Field(None, description="Resource ACL check")
    require_authentication: bool = Field(True, description="Deny when no principal is present")

    def to_requirement(self) -> Requirement:
        return Requirement(
            roles=self.roles or None,
            permissions=self.permissions or None,
            policies=list(self.policies),
            resource=ResourceRequirement(**self.resource.model_dump()) if self.resource else None,
            require_authentication=self.require_authentication,
        )


class DecisionRequest(BaseModel):
    """Request model for a decision."""
    operation: Optional[str] = Field(None, description="Registered operation id")
    requirement: Optional[RequirementModel] = Field(None, description="Inline requirement")
    envelope: Dict[str, Any] = Field(default_factory=dict, description="Transport-tagged request envelope")


class DecisionResponse(BaseModel):
    """Response model for a decision."""
    allowed: bool
    reason: DecisionReason
    error_code: Optional[str] = None
    detail: Optional[str] = None


class GrantRequest(BaseModel):
    """Request model for granting resource actions."""
    principal_id: str = Field(..., description="Grantee")
    resource_type: str = Field(..., description="Resource type")
    resource_id: str = Field(..., description="Resource id")
    actions: List[str] = Field(..., description="Complete action set")


class DelegateRequest(BaseModel):
    """Request model for delegating resource actions."""
    from_principal_id: Optional[str] = Field(None, description="Delegating principal, defaults to the caller")
    to_principal_id: str = Field(..., description="Receiving principal")
    resource_type: str = Field(..., description="Resource type")
    resource_id: str = Field(..., description="Resource id")
    actions: List[str] = Field(..., description="Actions to hand over")


class CheckAccessRequest(BaseModel):
    """Request model for a resource access check."""
    principal_id: str
    resource_type: str
    resource_id: str
    action: str


class CheckAccessResponse(BaseModel):
    """Response model for a resource access check."""
    allowed: bool


class GrantResponse(BaseModel):
    """Response model for grant operations."""
    principal_id: str
    resource_type: str
    resource_id: str
    actions: List[str]
    status: EntityStatus
    updated_at: datetime

    @classmethod
    def from_grant(cls, grant: ResourceGrant) -> "GrantResponse":
        return cls(
            principal_id=grant.key.principal_id,
            resource_type=grant.key.resource_type,
            resource_id=grant.key.resource_id,
            actions=sorted(grant.actions),
            status=grant.status,
            updated_at=grant.updated_at,
        )


class EffectivePermissionsResponse(BaseModel):
    """Response model for a role's effective permissions."""
    role_id: str
    permissions: List[str]
