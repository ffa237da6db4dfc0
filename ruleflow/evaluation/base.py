"""
Collaborator interfaces for expression evaluation and message rendering.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from ..rules.types import to_bool

# Called as dispatcher(function_name, positional_args) and returns the result.
FunctionDispatcher = Callable[[str, Sequence[Any]], Any]


class ExpressionEvaluator(ABC):
    """Pluggable expression back end.

    Implementations evaluate ``expression`` against ``bindings``. Every name
    in ``function_names`` must be callable from inside the expression for
    the duration of that one evaluation, and calling it must go through
    ``dispatcher``.
    """

    @abstractmethod
    def evaluate(
        self,
        expression: str,
        bindings: Mapping[str, Any],
        function_names: Iterable[str] = (),
        dispatcher: Optional[FunctionDispatcher] = None,
    ) -> Any:
        """Evaluate an expression and return its value."""

    def evaluate_condition(
        self,
        expression: str,
        bindings: Mapping[str, Any],
        function_names: Iterable[str] = (),
        dispatcher: Optional[FunctionDispatcher] = None,
    ) -> bool:
        """Evaluate an expression and coerce the result to a boolean."""
        return to_bool(self.evaluate(expression, bindings, function_names, dispatcher))

    @staticmethod
    def bind_functions(
        function_names: Iterable[str],
        dispatcher: Optional[FunctionDispatcher],
    ) -> Dict[str, Callable[..., Any]]:
        """Build one callable per visible function name."""
        if dispatcher is None:
            return {}

        def make(name: str) -> Callable[..., Any]:
            def call(*args):
                return dispatcher(name, args)
            call.__name__ = name
            return call

        return {name: make(name) for name in function_names}


class TemplateRenderer(ABC):
    """Renders validation message templates."""

    @abstractmethod
    def render(self, template: str, bindings: Mapping[str, Any]) -> str:
        """Render ``template`` against ``bindings``."""
