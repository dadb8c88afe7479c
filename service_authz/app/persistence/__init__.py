"""
Entity stores for the Authz service.

The decision engine only reads roles, permissions and policies; grants
are read and mutated through the resource ACL store. Two backends ship:

- memory: dict-backed stores for local mode and tests
- postgres: asyncpg-backed stores sharing one pool

Both implement the interfaces in ``base``.
"""
