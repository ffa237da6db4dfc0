"""
Function definitions callable from rule expressions.

Host functions record their parameter and return types at registration
time so each call can be checked and converted without reflection.
"""

import inspect
import sys
import types
import typing
from collections import ChainMap, abc
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from ..shared.errors import ConfigurationError, TypeCoercionError
from ..rules.types import ValueType, coerce, parse_value_type

TypeSpec = Union[str, type, ValueType, None]

if sys.version_info >= (3, 10):
    _UNION_ORIGINS = (Union, types.UnionType)
else:
    _UNION_ORIGINS = (Union,)


@dataclass(frozen=True)
class FunctionParameter:
    """One positional parameter of a host function."""
    name: str
    value_type: ValueType = ValueType.ANY
    nullable: bool = True


def _describe_annotation(annotation: Any) -> Tuple[ValueType, bool]:
    """Map a Python annotation to (value type, nullable)."""
    if annotation is inspect.Parameter.empty or annotation is Any or annotation is None:
        return ValueType.ANY, True

    origin = typing.get_origin(annotation)
    if origin in _UNION_ORIGINS:
        members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        nullable = len(members) != len(typing.get_args(annotation))
        if len(members) == 1:
            value_type, _ = _describe_annotation(members[0])
            return value_type, nullable
        return ValueType.ANY, nullable
    if origin in (list, tuple, abc.Sequence):
        return ValueType.LIST, False
    if origin in (dict, abc.Mapping):
        return ValueType.DICT, False

    if isinstance(annotation, type):
        value_type = parse_value_type(annotation)
        return value_type, value_type == ValueType.ANY
    return ValueType.ANY, True


def _parse_type_spec(spec: TypeSpec) -> Tuple[ValueType, bool]:
    """Explicit type specs; a trailing ``?`` on a tag marks it nullable."""
    if isinstance(spec, str) and spec.strip().endswith("?"):
        return parse_value_type(spec.strip()[:-1]), True
    value_type = parse_value_type(spec)
    return value_type, value_type == ValueType.ANY


@dataclass(frozen=True)
class FunctionSignature:
    """Declared shape of a host function."""
    parameters: Tuple[FunctionParameter, ...] = ()
    return_type: ValueType = ValueType.ANY
    variadic: bool = False

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        param_types: Optional[Sequence[TypeSpec]] = None,
        return_type: TypeSpec = None,
    ) -> "FunctionSignature":
        """Build a signature from annotations, overridden by explicit types."""
        try:
            signature = inspect.signature(func)
        except (TypeError, ValueError):
            signature = None

        try:
            hints = typing.get_type_hints(func)
        except Exception:
            hints = {}

        parameters: List[FunctionParameter] = []
        variadic = False
        if signature is None:
            variadic = param_types is None
        else:
            for param in signature.parameters.values():
                if param.kind == inspect.Parameter.VAR_POSITIONAL:
                    variadic = True
                    continue
                if param.kind in (inspect.Parameter.KEYWORD_ONLY, inspect.Parameter.VAR_KEYWORD):
                    if param.kind == inspect.Parameter.KEYWORD_ONLY and param.default is inspect.Parameter.empty:
                        raise ConfigurationError(
                            f"Function parameter '{param.name}' must be positional",
                            {"parameter": param.name}
                        )
                    continue
                value_type, nullable = _describe_annotation(hints.get(param.name, param.annotation))
                if param.default is None:
                    nullable = True
                parameters.append(FunctionParameter(param.name, value_type, nullable))

        if param_types is not None:
            if signature is not None and not variadic and len(param_types) != len(parameters):
                raise ConfigurationError(
                    f"Function declares {len(parameters)} parameters but {len(param_types)} types were given"
                )
            names = [p.name for p in parameters] + [f"arg{i}" for i in range(len(parameters), len(param_types))]
            parameters = [
                FunctionParameter(names[i], *_parse_type_spec(spec))
                for i, spec in enumerate(param_types)
            ]

        if return_type is not None:
            resolved_return, _ = _parse_type_spec(return_type)
        else:
            resolved_return, _ = _describe_annotation(hints.get("return", inspect.Parameter.empty))

        return cls(tuple(parameters), resolved_return, variadic)

    def adapt(self, function_name: str, args: Sequence[Any]) -> List[Any]:
        """Check arity and convert each argument to its declared type."""
        expected = len(self.parameters)
        if len(args) != expected and not (self.variadic and len(args) > expected):
            raise ConfigurationError(
                f"Function '{function_name}' expects {expected} arguments, but {len(args)} were provided",
                {"function": function_name, "expected": expected, "provided": len(args)}
            )

        adapted: List[Any] = []
        for position, arg in enumerate(args):
            if position >= expected:
                adapted.append(arg)
                continue
            param = self.parameters[position]
            if arg is None:
                if not param.nullable:
                    raise ConfigurationError(
                        f"Argument at position {position} of '{function_name}' is null, "
                        f"but parameter '{param.name}' is a non-nullable {param.value_type.value}",
                        {"function": function_name, "position": position}
                    )
                adapted.append(None)
                continue
            try:
                adapted.append(coerce(arg, param.value_type))
            except TypeCoercionError as e:
                raise ConfigurationError(
                    f"Argument at position {position} of '{function_name}' is invalid: {e.message}",
                    {"function": function_name, "position": position}
                )
        return adapted


@dataclass(frozen=True)
class HostFunction:
    """A function supplied by the host application."""
    name: str
    implementation: Callable[..., Any]
    cache_results: bool = False
    signature: FunctionSignature = field(default_factory=FunctionSignature)

    @classmethod
    def create(
        cls,
        name: str,
        implementation: Callable[..., Any],
        cache_results: bool = False,
        param_types: Optional[Sequence[TypeSpec]] = None,
        return_type: TypeSpec = None,
    ) -> "HostFunction":
        if not name:
            raise ConfigurationError("Function name cannot be empty")
        if not callable(implementation):
            raise ConfigurationError(f"Function '{name}' implementation is not callable", {"function": name})
        if inspect.iscoroutinefunction(implementation):
            raise ConfigurationError(
                f"Function '{name}' is a coroutine function; expression functions must be synchronous",
                {"function": name}
            )
        signature = FunctionSignature.from_callable(implementation, param_types, return_type)
        return cls(name, implementation, cache_results, signature)

    def call(self, invoker, args: Sequence[Any], context=None) -> Any:
        adapted = self.signature.adapt(self.name, args)
        if self.cache_results and invoker.cache_enabled:
            return invoker.cache.get_or_compute(self.name, adapted, lambda: self._execute(invoker, adapted))
        return self._execute(invoker, adapted)

    def _execute(self, invoker, adapted: Sequence[Any]) -> Any:
        if invoker.metrics:
            invoker.metrics.record_function_call(self.name)
        result = self.implementation(*adapted)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise ConfigurationError(
                f"Function '{self.name}' returned an awaitable; expression functions must be synchronous",
                {"function": self.name}
            )
        if self.signature.return_type != ValueType.ANY:
            result = coerce(result, self.signature.return_type)
        return result


@dataclass(frozen=True)
class ExpressionFunction:
    """A function defined by an expression inside a rule set."""
    name: str
    parameters: Tuple[str, ...]
    expression: str
    preload: Tuple[str, ...] = ()

    def call(self, invoker, args: Sequence[Any], context=None) -> Any:
        if len(args) != len(self.parameters):
            raise ConfigurationError(
                f"Function '{self.name}' expects {len(self.parameters)} arguments, but {len(args)} were provided",
                {"function": self.name, "expected": len(self.parameters), "provided": len(args)}
            )
        if context is None:
            raise ConfigurationError(
                f"Function '{self.name}' can only be called during rule execution",
                {"function": self.name}
            )
        bindings = ChainMap(dict(zip(self.parameters, args)), context.bindings)
        return context.evaluate(self.expression, bindings)
