"""
Dispatch of expression function calls back into the engine.
"""

from typing import Any, List, Mapping, Optional, Sequence, Union

from ..cache.function_cache import FunctionResultCache
from ..shared.errors import ConfigurationError
from ..shared.logging import get_logger
from ..shared.metrics import MetricsCollector
from .registry import ExpressionFunction, HostFunction

RegisteredFunction = Union[HostFunction, ExpressionFunction]


class FunctionInvoker:
    """Validates, adapts and optionally memoizes function calls."""

    def __init__(
        self,
        functions: Mapping[str, RegisteredFunction],
        cache: Optional[FunctionResultCache] = None,
        cache_enabled: bool = True,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.functions = dict(functions)
        self.cache = cache or FunctionResultCache(metrics)
        self.cache_enabled = cache_enabled
        self.metrics = metrics
        self.logger = get_logger("ruleflow.functions.invoker")

    @property
    def function_names(self) -> List[str]:
        return list(self.functions)

    def invoke(self, name: str, args: Sequence[Any], context=None) -> Any:
        """Call a registered function with positional arguments."""
        function = self.functions.get(name)
        if function is None:
            self.logger.warning("Unknown function called", function=name)
            raise ConfigurationError(f"Invalid function name '{name}'", {"function": name})
        return function.call(self, list(args), context)
