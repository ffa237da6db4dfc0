"""
Expression evaluation and message rendering collaborators.

Modules of interest:
- base: Evaluator and renderer interfaces, including the condition
  coercion helper and the per-evaluation function binding hook.
- python_engine: Sandboxed Python-syntax expression evaluator.
- templates: Basic placeholder and Jinja2 validation message renderers.

Hosts may supply their own back ends by implementing the interfaces in
``base``.
"""
