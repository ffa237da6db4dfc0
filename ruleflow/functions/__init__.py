"""
Functions package.

Host applications register plain callables that rule expressions may call;
rule sets may also define small expression-backed functions.

Modules of interest:
- registry: Function signatures, host functions and expression functions.
- invoker: Name validation, argument adaptation and result caching.
"""
