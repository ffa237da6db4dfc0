"""
Variable resolution, one strategy per variable kind.
"""

import inspect
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict

from ..shared.errors import ConfigurationError, ResolutionError
from ..shared.logging import get_logger
from .aggregate import evaluate_aggregate
from .models import (
    IMMUTABLE_KINDS, AggregateVariable, ConstantVariable, ExpressionVariable,
    FieldValueVariable, ValueProviderVariable, VariableDefinition, VariableKind
)
from .types import coerce

logger = get_logger("ruleflow.rules.variables")


async def _resolve_constant(definition: ConstantVariable, context) -> Any:
    return definition.default


def _is_mutable(name: str, context) -> bool:
    """True for names whose value may change after a provider has run."""
    if name in context.parameter_names:
        return False
    definition = context.variables.get(name)
    return definition is None or definition.kind not in IMMUTABLE_KINDS


async def _resolve_value_provider(definition: ValueProviderVariable, context) -> Any:
    if definition.provider is None:
        raise ConfigurationError(f"Variable '{definition.name}' has no value provider", {"name": definition.name})

    args = []
    for parameter in definition.parameters:
        if _is_mutable(parameter, context):
            raise ConfigurationError(
                f"The mutable value '{parameter}' cannot be used as an input to a value provider",
                {"variable": definition.name, "parameter": parameter}
            )
        args.append(await context.get(parameter))

    logger.debug("Invoking value provider", variable=definition.name, arguments=len(args))
    result = definition.provider(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _resolve_aggregate(definition: AggregateVariable, context) -> Any:
    return await evaluate_aggregate(definition, context)


async def _resolve_field_value(definition: FieldValueVariable, context) -> Any:
    record = await context.get(definition.record)
    if isinstance(record, Mapping):
        return record.get(definition.field_name)
    if record is None:
        raise ResolutionError(
            f"Record variable '{definition.record}' is null",
            {"variable": definition.name, "record": definition.record}
        )
    if not hasattr(record, definition.field_name):
        raise ResolutionError(
            f"Field '{definition.field_name}' not found in record variable '{definition.record}'",
            {"variable": definition.name, "record": definition.record, "field": definition.field_name}
        )
    return getattr(record, definition.field_name)


async def _resolve_expression(definition: ExpressionVariable, context) -> Any:
    return context.evaluate(definition.expression)


_RESOLVERS: Dict[VariableKind, Callable[[Any, Any], Awaitable[Any]]] = {
    VariableKind.CONSTANT: _resolve_constant,
    VariableKind.VALUE_PROVIDER: _resolve_value_provider,
    VariableKind.AGGREGATE: _resolve_aggregate,
    VariableKind.FIELD_VALUE: _resolve_field_value,
    VariableKind.EXPRESSION: _resolve_expression,
}


async def resolve_variable(definition: VariableDefinition, context) -> Any:
    """Preload dependencies, compute the variable's value and apply its declared type."""
    for name in definition.preload:
        await context.preload(name)

    resolver = _RESOLVERS.get(definition.kind)
    if resolver is None:
        raise ConfigurationError(f"Unknown variable type for '{definition.name}'", {"name": definition.name})

    value = await resolver(definition, context)
    if definition.value_type is not None:
        value = coerce(value, definition.value_type)
    return value
