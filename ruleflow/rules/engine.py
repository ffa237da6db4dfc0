"""
Rules engine.

A built engine is immutable and may serve concurrent invocations; every
call to ``execute`` works on its own execution context.
"""

import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..evaluation.base import ExpressionEvaluator, TemplateRenderer
from ..functions.invoker import FunctionInvoker
from ..shared.errors import ParameterError, RuleEngineException
from ..shared.logging import clear_context, get_logger, set_invocation_id, set_rule_set_context
from ..shared.metrics import MetricsCollector
from .context import ExecutionContext
from .executor import RuleExecutor
from .models import EvaluationResult, RuleGraph
from .types import coerce, matches_type

logger = get_logger("ruleflow.rules.engine")


@dataclass(frozen=True)
class EngineRuntime:
    """Collaborators shared by every invocation of an engine."""
    evaluator: ExpressionEvaluator
    renderer: TemplateRenderer
    executor: RuleExecutor
    invoker: FunctionInvoker


class RulesEngine:
    """Evaluates a rule graph against invocation parameters."""

    def __init__(self, graph: RuleGraph, runtime: EngineRuntime, metrics: Optional[MetricsCollector] = None):
        self._graph = graph
        self.runtime = runtime
        self.metrics = metrics
        self._label = ", ".join(dict.fromkeys(f"{r.rule_set}({r.version})" for r in graph.rules))

    @property
    def graph(self) -> RuleGraph:
        return self._graph

    @property
    def function_cache(self):
        return self.runtime.invoker.cache

    def load_parameters(self, parameters: Mapping[str, Any]) -> Dict[str, Any]:
        """Check supplied values against declared parameters.

        Undeclared values are ignored. Missing optional parameters take their
        default (or None).
        """
        loaded: Dict[str, Any] = {}
        for definition in self._graph.parameters:
            if definition.name not in parameters:
                if not definition.optional:
                    raise ParameterError(definition.name, f"Parameter '{definition.name}' is required")
                default = definition.default
                loaded[definition.name] = None if default is None else coerce(default, definition.value_type)
                continue

            value = parameters[definition.name]
            if value is not None and not matches_type(value, definition.value_type):
                raise ParameterError(
                    definition.name,
                    f"Parameter '{definition.name}' expects {definition.value_type.value}, "
                    f"got {type(value).__name__}",
                    {"expected": definition.value_type.value, "actual": type(value).__name__}
                )
            loaded[definition.name] = value
        return loaded

    def create_context(self, parameters: Mapping[str, Any]) -> ExecutionContext:
        loaded = self.load_parameters(parameters)
        return ExecutionContext(self._graph, self.runtime, loaded)

    async def execute(self, parameters: Mapping[str, Any]) -> EvaluationResult:
        """Run the rules once and collect the declared outputs."""
        if parameters is None:
            raise ParameterError("parameters", "Parameters cannot be null")

        invocation_id = set_invocation_id()
        set_rule_set_context(self._label)
        try:
            result = await self._invoke(parameters)
            logger.info(
                "Invocation finished",
                invocation_id=invocation_id,
                is_valid=result.is_valid,
                rules_evaluated=len(result.evaluated_rules),
                validation_messages=len(result.validation_messages),
                evaluation_time_ms=round(result.evaluation_time_ms, 3),
            )
            return result
        finally:
            clear_context()

    async def _invoke(self, parameters: Mapping[str, Any]) -> EvaluationResult:
        start_time = time.time()
        timer = self.metrics.time_operation("invocation_duration_seconds") if self.metrics else nullcontext()

        try:
            logger.debug("Invocation started", parameters=sorted(parameters))
            context = self.create_context(parameters)

            with timer:
                await context.preload_all(self._graph.preload)
                await self.runtime.executor.execute_rules(self._graph.rules, context)
                outputs = {name: await context.get(name) for name in self._graph.output_names}

        except RuleEngineException as e:
            logger.error("Invocation failed", code=e.code, error=e.message, details=e.details)
            self._record_failure(e.code)
            raise

        except Exception as e:
            logger.error("Invocation failed", code="INTERNAL_ERROR", error=str(e), exc_info=True)
            self._record_failure("INTERNAL_ERROR")
            raise

        elapsed = time.time() - start_time
        result = EvaluationResult(
            is_valid=context.is_valid,
            outputs=outputs,
            evaluated_rules=list(context.evaluated_rules),
            validation_messages=list(context.validation_messages),
            evaluation_time_ms=elapsed * 1000,
        )

        if self.metrics:
            self.metrics.record_invocation(
                "valid" if result.is_valid else "invalid",
                rules_evaluated=len(result.evaluated_rules),
                validation_messages=len(result.validation_messages),
            )
        return result

    def _record_failure(self, code: str):
        if self.metrics:
            self.metrics.record_invocation("error")
            self.metrics.record_error(code)
