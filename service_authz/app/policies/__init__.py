"""
Policy package.

- conditions: tagged condition tree and the one-time document parser
- evaluator: ALLOW/DENY policy evaluation against a request context
"""
