"""
Authz Service package for the access decision engine.

This package decides whether a principal may perform an operation, combining
role inheritance, condition-tree policies and per-resource grants. It provides:

- app.main: API surface for decisions, effective permissions and grants.
- app.rbac: Role hierarchy resolution and the role/permission gate.
- app.policies: Condition parsing and policy evaluation.
- app.resources: Resource grants (ACLs) with per-key serialized writes.
- app.context: Transport envelopes normalized into one request context.
- app.decision: The decision pipeline and the operation requirement table.
- app.persistence: In-memory and PostgreSQL stores.
- app.locks: Local and Redis key locks.

Guidelines:
- Decisions are fail-closed; an error on the decision path never permits.
- Read fresh data per decision; nothing on the read path is cached.
- Keep evaluation deterministic and observable (metrics + logs).
"""
