"""
Rule graph, execution context and the engine that walks them.

- types: semantic value types, coercion and truthiness
- models: compiled rules, variable definitions and the rule graph
- context: per-invocation bindings, trail and verdict
- variables / aggregate: lazy variable resolution
- executor: the rule-list state machine
- engine / builder: the public entry points

Submodules import each other directly; keep this file free of imports.
"""
