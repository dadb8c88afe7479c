"""
Shared utilities for the access decision engine.

This package aggregates common building blocks consumed by the services:

- base_service: FastAPI service skeleton with health, metrics and error handlers
- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and decision correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
