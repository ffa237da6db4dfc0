"""
Per-invocation execution state.

A context owns the local bindings for one invocation, the evaluated-rule
trail and the validation verdict. Definitions (variables, functions) are
read from the shared, immutable rule graph and never copied.

Bindings are a ``ChainMap``: a cloned context pushes a fresh layer over its
parent's bindings, so writes made while evaluating an aggregate row never
reach the parent.
"""

from collections import ChainMap
from typing import Any, Iterable, List, Mapping, MutableMapping, Optional

from ..shared.errors import CircularDependencyError, ConfigurationError
from .models import COMPUTED_KINDS, Rule, RuleGraph
from .types import coerce
from .variables import resolve_variable


class ExecutionContext:
    """Mutable state for a single rule engine invocation."""

    def __init__(
        self,
        graph: RuleGraph,
        runtime,
        parameters: Optional[Mapping[str, Any]] = None,
        *,
        bindings: Optional[ChainMap] = None,
        parameter_names: Optional[Iterable[str]] = None,
        resolving: Optional[List[str]] = None,
    ):
        self.graph = graph
        self.runtime = runtime
        self.parameter_names = frozenset(parameter_names if parameter_names is not None else (parameters or {}))
        self.bindings: ChainMap = bindings if bindings is not None else ChainMap(dict(parameters or {}))
        self.evaluated_rules: List[str] = []
        self.is_valid = True
        self.validation_messages: List[str] = []
        self._resolving: List[str] = list(resolving or [])

    @property
    def variables(self) -> Mapping:
        return self.graph.variables

    @property
    def function_names(self) -> List[str]:
        return self.runtime.invoker.function_names

    async def get(self, name: str) -> Any:
        """Return a bound value, resolving and memoizing declared variables."""
        if name in self.bindings:
            return self.bindings[name]

        definition = self.graph.variables.get(name)
        if definition is None:
            return None

        if name in self._resolving:
            cycle = self._resolving[self._resolving.index(name):] + [name]
            raise CircularDependencyError(cycle)

        self._resolving.append(name)
        try:
            value = await resolve_variable(definition, self)
        finally:
            self._resolving.pop()

        self.set(name, value, initialization=True)
        return self.bindings[name]

    def set(self, name: str, value: Any, initialization: bool = False):
        """Bind a value, enforcing parameter and computed-variable immutability."""
        if name in self.parameter_names and not initialization:
            raise ConfigurationError(f"Parameter '{name}' cannot be assigned to", {"name": name})

        definition = self.graph.variables.get(name)
        if definition is not None:
            if not initialization and definition.kind in COMPUTED_KINDS:
                raise ConfigurationError(
                    f"Variable '{name}' cannot be assigned to",
                    {"name": name, "kind": definition.kind.value}
                )
            if definition.value_type is not None and value is not None:
                value = coerce(value, definition.value_type)

        self.bindings[name] = value

    async def preload(self, name: str):
        """Resolve and bind ``name`` unless it is already bound."""
        if name in self.bindings:
            return
        if name not in self.graph.variables:
            raise ConfigurationError(f"Cannot preload undeclared variable '{name}'", {"name": name})
        self.set(name, await self.get(name), initialization=True)

    async def preload_all(self, names: Iterable[str]):
        """Preload names sequentially, in order."""
        for name in names:
            await self.preload(name)

    def evaluate(self, expression: str, bindings: Optional[Mapping[str, Any]] = None) -> Any:
        """Evaluate an expression with this context's functions visible."""
        return self.runtime.evaluator.evaluate(
            expression,
            self.bindings if bindings is None else bindings,
            self.function_names,
            self.call_function,
        )

    def evaluate_condition(self, expression: str, bindings: Optional[Mapping[str, Any]] = None) -> bool:
        """Evaluate an expression and apply the canonical truthiness rule."""
        return self.runtime.evaluator.evaluate_condition(
            expression,
            self.bindings if bindings is None else bindings,
            self.function_names,
            self.call_function,
        )

    def call_function(self, name: str, args) -> Any:
        return self.runtime.invoker.invoke(name, args, self)

    def render(self, template: str) -> str:
        return self.runtime.renderer.render(template, self.bindings)

    def record_rule(self, rule: Rule):
        self.evaluated_rules.append(rule.label)

    def add_validation_message(self, message: str):
        self.validation_messages.append(message)

    def mark_invalid(self):
        self.is_valid = False

    def clone(self, seed: Optional[Mapping[str, Any]] = None) -> "ExecutionContext":
        """Create an isolated scope over this context's bindings.

        The clone shares definitions, starts with an empty trail and a valid
        verdict, and writes only into its own binding layer.
        """
        layer: MutableMapping[str, Any] = dict(seed or {})
        return ExecutionContext(
            self.graph,
            self.runtime,
            bindings=self.bindings.new_child(layer),
            parameter_names=self.parameter_names,
            resolving=self._resolving,
        )

    def snapshot(self) -> dict:
        """Flatten the visible bindings into a plain dict."""
        return dict(self.bindings)
