"""
Caching package.

Holds the engine-scoped function-result cache used by the function invoker.
"""
