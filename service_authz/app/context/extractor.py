"""
Request context extraction for HTTP, GraphQL and RPC envelopes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from shared.logging import get_logger
from shared.errors import ValidationError
from ..models import Principal, RequestContext


PrincipalLike = Union[Principal, Dict[str, Any], None]


@dataclass
class HttpEnvelope:
    """HTTP request as seen by the service."""
    user: PrincipalLike = None
    ip: Optional[str] = None
    body: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class GraphQLEnvelope:
    """GraphQL resolver call: the underlying request plus resolver args."""
    req: Dict[str, Any] = field(default_factory=dict)
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RpcEnvelope:
    """RPC call payload."""
    data: Dict[str, Any] = field(default_factory=dict)


Envelope = Union[HttpEnvelope, GraphQLEnvelope, RpcEnvelope]


def _coerce_principal(user: PrincipalLike) -> Optional[Principal]:
    if user is None:
        return None
    principal = user if isinstance(user, Principal) else Principal.from_claims(user)
    # A deactivated principal is treated as unauthenticated
    if not principal.is_active:
        return None
    return principal


def _forwarded_ip(headers: Dict[str, str]) -> Optional[str]:
    for name, value in headers.items():
        if name.lower() == "x-forwarded-for" and value:
            return value.split(",")[0].strip() or None
    return None


class RequestContextExtractor:
    """Normalizes transport envelopes into a RequestContext."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now
        self.logger = get_logger("authz.context")

    def extract(self, envelope: Any) -> RequestContext:
        """Build the request context for one call.

        Unknown envelope types yield an empty context, which every
        authenticated requirement will then deny.
        """
        if isinstance(envelope, HttpEnvelope):
            return RequestContext(
                principal=_coerce_principal(envelope.user),
                ip=envelope.ip or _forwarded_ip(envelope.headers),
                body=dict(envelope.body or {}),
                params=dict(envelope.params or {}),
                timestamp=self.clock(),
                transport="http",
            )

        elif isinstance(envelope, GraphQLEnvelope):
            req = envelope.req or {}
            return RequestContext(
                principal=_coerce_principal(req.get("user")),
                ip=req.get("ip") or _forwarded_ip(req.get("headers") or {}),
                body=dict(envelope.args or {}),
                params=dict(envelope.args or {}),
                timestamp=self.clock(),
                transport="graphql",
            )

        elif isinstance(envelope, RpcEnvelope):
            data = envelope.data or {}
            return RequestContext(
                principal=_coerce_principal(data.get("user")),
                ip=data.get("ip"),
                body=dict(data.get("body") or {}),
                params=dict(data.get("params") or {}),
                timestamp=self.clock(),
                transport="rpc",
            )

        self.logger.warning("Unsupported envelope type", envelope=type(envelope).__name__)
        return RequestContext(timestamp=self.clock())


def envelope_from_payload(payload: Dict[str, Any]) -> Envelope:
    """Build an envelope from a JSON payload tagged with ``transport``."""
    transport = (payload.get("transport") or "http").lower()

    if transport == "http":
        return HttpEnvelope(
            user=payload.get("user"),
            ip=payload.get("ip"),
            body=payload.get("body") or {},
            params=payload.get("params") or {},
            headers=payload.get("headers") or {},
        )

    if transport == "graphql":
        return GraphQLEnvelope(
            req=payload.get("req") or {},
            args=payload.get("args") or {},
        )

    if transport == "rpc":
        return RpcEnvelope(data=payload.get("data") or {})

    raise ValidationError(
        f"Unsupported transport: {transport}",
        details={"transport": transport}
    )
