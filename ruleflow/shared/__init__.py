"""
Shared utilities for the ruleflow engine.

This package aggregates common building blocks consumed by every part of
the engine:

- config: Engine settings via pydantic-settings
- logging: Structured logging with invocation correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Cross-cutting logic lives here to avoid import cycles between the rule,
function and evaluation packages. Do not import from those packages into
shared/.
"""
