"""
Sandboxed evaluator for Python-syntax expressions.

Expressions are parsed with ``ast`` and walked node by node; only a fixed
set of node types is accepted and nothing is handed to ``eval``. Names
resolve against the supplied bindings, then the visible engine functions,
then a small set of safe builtins.
"""

import ast
import math
import operator
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from ..shared.errors import EvaluationError, RuleEngineException
from ..shared.logging import get_logger
from ..rules.types import to_bool
from .base import ExpressionEvaluator, FunctionDispatcher

SAFE_BUILTINS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "bool": to_bool,
    "ceil": math.ceil,
    "float": float,
    "floor": math.floor,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "round": round,
    "sqrt": math.sqrt,
    "str": str,
    "sum": sum,
}

# Lower-case literals so rule authors can write ``Permanent == true``.
LITERALS: Dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
}

ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.And,
    ast.Or,
    ast.Not,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.USub,
    ast.UAdd,
    ast.Eq,
    ast.NotEq,
    ast.Gt,
    ast.GtE,
    ast.Lt,
    ast.LtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
)

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

COMPARISON_OPERATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

UNARY_OPERATORS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: lambda value: not to_bool(value),
}


class _Program:
    """Validated expression tree ready for repeated evaluation."""

    __slots__ = ("source", "tree")

    def __init__(self, source: str, tree: ast.Expression):
        self.source = source
        self.tree = tree


@lru_cache(maxsize=1024)
def _compile(expression: str, max_nodes: int) -> _Program:
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise EvaluationError(
            f"Invalid expression syntax: {e.msg}",
            {"expression": expression, "offset": e.offset}
        )

    count = 0
    for node in ast.walk(tree):
        count += 1
        if count > max_nodes:
            raise EvaluationError(
                "Expression exceeds the evaluator node limit",
                {"expression": expression, "max_nodes": max_nodes}
            )
        if not isinstance(node, ALLOWED_NODES):
            raise EvaluationError(
                f"Unsupported syntax: {type(node).__name__}",
                {"expression": expression}
            )
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise EvaluationError(
                f"Access to private attribute '{node.attr}' is not allowed",
                {"expression": expression}
            )
        if isinstance(node, ast.Dict) and any(key is None for key in node.keys):
            raise EvaluationError("Dictionary unpacking is not allowed", {"expression": expression})
        if isinstance(node, ast.Call) and (node.keywords or not isinstance(node.func, ast.Name)):
            raise EvaluationError(
                "Only positional calls to named functions are allowed",
                {"expression": expression}
            )
    return _Program(expression, tree)


class PythonExpressionEvaluator(ExpressionEvaluator):
    """Evaluates Python-syntax expressions without ``eval``."""

    def __init__(self, max_length: int = 4096, max_nodes: int = 2000,
                 extra_builtins: Optional[Mapping[str, Callable[..., Any]]] = None):
        self.max_length = max_length
        self.max_nodes = max_nodes
        self.builtins = dict(SAFE_BUILTINS)
        if extra_builtins:
            self.builtins.update(extra_builtins)
        self.logger = get_logger("ruleflow.evaluation.python")

    @classmethod
    def from_settings(cls, settings) -> "PythonExpressionEvaluator":
        """Create an evaluator honouring the configured limits."""
        return cls(max_length=settings.expression_max_length, max_nodes=settings.expression_max_nodes)

    def evaluate(
        self,
        expression: str,
        bindings: Mapping[str, Any],
        function_names: Iterable[str] = (),
        dispatcher: Optional[FunctionDispatcher] = None,
    ) -> Any:
        """Evaluate an expression against bindings and visible functions."""
        if expression is None or not str(expression).strip():
            raise EvaluationError("Expression cannot be empty")
        if len(expression) > self.max_length:
            raise EvaluationError(
                "Expression exceeds the evaluator length limit",
                {"length": len(expression), "max_length": self.max_length}
            )

        program = _compile(expression, self.max_nodes)
        functions = self.bind_functions(function_names, dispatcher)
        try:
            return self._eval(program.tree.body, bindings, functions)
        except RuleEngineException:
            raise
        except (ArithmeticError, TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            self.logger.debug("Expression evaluation failed", expression=expression, error=str(e))
            raise EvaluationError(
                f"Error evaluating '{expression}': {e}",
                {"expression": expression, "error_type": type(e).__name__}
            )

    def _lookup(self, name: str, bindings: Mapping[str, Any], functions: Dict[str, Callable[..., Any]]) -> Any:
        if name in bindings:
            return bindings[name]
        if name in functions:
            return functions[name]
        if name in LITERALS:
            return LITERALS[name]
        if name in self.builtins:
            return self.builtins[name]
        raise EvaluationError(f"Name '{name}' is not defined", {"name": name})

    def _eval(self, node: ast.AST, bindings: Mapping[str, Any], functions: Dict[str, Callable[..., Any]]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            return self._lookup(node.id, bindings, functions)

        if isinstance(node, ast.BoolOp):
            # Short-circuit with the engine's truthiness, returning the deciding operand
            value = None
            for operand in node.values:
                value = self._eval(operand, bindings, functions)
                truthy = to_bool(value)
                if isinstance(node.op, ast.And) and not truthy:
                    return value
                if isinstance(node.op, ast.Or) and truthy:
                    return value
            return value

        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, bindings, functions)
            right = self._eval(node.right, bindings, functions)
            return BINARY_OPERATORS[type(node.op)](left, right)

        if isinstance(node, ast.UnaryOp):
            return UNARY_OPERATORS[type(node.op)](self._eval(node.operand, bindings, functions))

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, bindings, functions)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, bindings, functions)
                if not COMPARISON_OPERATORS[type(op)](left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            if to_bool(self._eval(node.test, bindings, functions)):
                return self._eval(node.body, bindings, functions)
            return self._eval(node.orelse, bindings, functions)

        if isinstance(node, ast.Call):
            func = self._lookup(node.func.id, bindings, functions)
            if not callable(func):
                raise EvaluationError(f"'{node.func.id}' is not callable", {"name": node.func.id})
            args = [self._eval(arg, bindings, functions) for arg in node.args]
            return func(*args)

        if isinstance(node, ast.Attribute):
            target = self._eval(node.value, bindings, functions)
            if isinstance(target, Mapping):
                return target.get(node.attr)
            return getattr(target, node.attr)

        if isinstance(node, ast.Subscript):
            target = self._eval(node.value, bindings, functions)
            return target[self._eval(node.slice, bindings, functions)]

        if isinstance(node, ast.Slice):
            return slice(
                self._eval(node.lower, bindings, functions) if node.lower else None,
                self._eval(node.upper, bindings, functions) if node.upper else None,
                self._eval(node.step, bindings, functions) if node.step else None,
            )

        if isinstance(node, ast.List):
            return [self._eval(item, bindings, functions) for item in node.elts]

        if isinstance(node, ast.Tuple):
            return tuple(self._eval(item, bindings, functions) for item in node.elts)

        if isinstance(node, ast.Dict):
            return {
                self._eval(key, bindings, functions): self._eval(value, bindings, functions)
                for key, value in zip(node.keys, node.values)
            }

        raise EvaluationError(f"Unsupported syntax: {type(node).__name__}")
