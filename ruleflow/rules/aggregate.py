"""
Aggregate variable evaluation.

Resolves a collection of row records, optionally rewrites each row through
a scoped sub-rule run, filters the rows and reduces them with one of the
supported aggregate functions.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, Dict, List

from ..shared.errors import ConfigurationError, ResolutionError, TypeCoercionError
from ..shared.logging import get_logger
from .models import AggregateFunction, AggregateVariable
from .types import is_numeric, to_bool

logger = get_logger("ruleflow.rules.aggregate")


async def _load_rows(definition: AggregateVariable, context) -> List[Mapping]:
    collection = await context.get(definition.collection)
    if collection is None or isinstance(collection, (str, bytes, Mapping)) or not isinstance(collection, Iterable):
        raise ResolutionError(
            f"Collection variable '{definition.collection}' is not found or is not a collection",
            {"variable": definition.name, "collection": definition.collection}
        )

    rows = list(collection)
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise ResolutionError(
                f"Row {index} of collection '{definition.collection}' is not a key/value record",
                {"variable": definition.name, "collection": definition.collection, "row": index}
            )
    return rows


async def _apply_sub_rules(definition: AggregateVariable, rows: List[Mapping], context) -> List[Dict[str, Any]]:
    """Run the sub-rules once per row, in order, each in its own cloned scope."""
    executor = context.runtime.executor
    transformed = []
    for row in rows:
        scope = context.clone(seed=row)
        await executor.execute_rules(definition.sub_rules, scope)
        transformed.append(scope.snapshot())
    return transformed


def _numeric(definition: AggregateVariable, value: Any) -> Any:
    if not is_numeric(value):
        raise TypeCoercionError(
            f"Aggregate '{definition.name}' projection produced a non-numeric value {value!r}",
            {"variable": definition.name, "function": definition.function.value}
        )
    return value


def _normalize(values: List[Any]) -> List[Any]:
    # Decimal does not mix with float arithmetic
    if any(isinstance(v, Decimal) for v in values) and not all(isinstance(v, Decimal) for v in values):
        return [v if isinstance(v, Decimal) else Decimal(str(v)) for v in values]
    return values


def _require_rows(definition: AggregateVariable, rows: List[Any]):
    if not rows:
        raise ResolutionError(
            f"Aggregate '{definition.name}' cannot compute {definition.function.value} of an empty collection",
            {"variable": definition.name, "function": definition.function.value}
        )


def reduce_rows(definition: AggregateVariable, rows: List[Mapping], context) -> Any:
    """Reduce filtered rows with the definition's aggregate function."""
    function = definition.function

    if function == AggregateFunction.COUNT:
        return len(rows)

    if not definition.expression:
        raise ConfigurationError(
            f"Aggregate '{definition.name}' requires an expression for {function.value}",
            {"variable": definition.name}
        )

    def project(row: Mapping) -> Any:
        return context.evaluate(definition.expression, row)

    if function == AggregateFunction.ALL:
        return all(to_bool(project(row)) for row in rows)

    if function == AggregateFunction.ANY:
        return any(to_bool(project(row)) for row in rows)

    values = _normalize([_numeric(definition, project(row)) for row in rows])

    if function == AggregateFunction.SUM:
        return sum(values, Decimal(0) if values and isinstance(values[0], Decimal) else 0)

    _require_rows(definition, values)

    if function == AggregateFunction.AVERAGE:
        return sum(values) / len(values)
    if function == AggregateFunction.MIN:
        return min(values)
    if function == AggregateFunction.MAX:
        return max(values)

    raise ConfigurationError(
        f"Aggregate function '{function}' is not supported",
        {"variable": definition.name}
    )


async def evaluate_aggregate(definition: AggregateVariable, context) -> Any:
    """Compute an aggregate variable against the current context."""
    rows = await _load_rows(definition, context)

    if definition.sub_rules:
        rows = await _apply_sub_rules(definition, rows, context)

    if definition.filter:
        rows = [row for row in rows if context.evaluate_condition(definition.filter, row)]

    result = reduce_rows(definition, rows, context)
    logger.debug(
        "Aggregate evaluated",
        variable=definition.name,
        function=definition.function.value,
        rows=len(rows)
    )
    return result
