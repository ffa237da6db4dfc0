"""
Rule graph data models for the ruleflow engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..shared.errors import ConfigurationError
from .types import ValueType


class RuleKind(str, Enum):
    """Rule kinds."""
    ASSIGN = "assign"
    EXECUTE = "execute"
    VALIDATE = "validate"

    @classmethod
    def parse(cls, value: Union[str, "RuleKind"]) -> "RuleKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unsupported rule type '{value}'", {"rule_type": value})


class ConditionKind(str, Enum):
    """Position of a rule inside a conditional chain."""
    NONE = "none"
    IF = "if"
    ELSE_IF = "else if"
    ELSE = "else"

    @classmethod
    def parse(cls, value: Union[str, "ConditionKind", None]) -> "ConditionKind":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        normalized = " ".join(str(value).strip().lower().split())
        if normalized in ("", "none"):
            return cls.NONE
        if normalized == "elseif":
            return cls.ELSE_IF
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"Unsupported condition type '{value}'", {"condition_type": value})


class VariableKind(str, Enum):
    """Variable definition variants."""
    CONSTANT = "constant"
    VALUE_PROVIDER = "value_provider"
    AGGREGATE = "aggregate"
    FIELD_VALUE = "field_value"
    EXPRESSION = "expression"


# Variables that can only be computed, never assigned by a rule.
COMPUTED_KINDS = frozenset({VariableKind.VALUE_PROVIDER, VariableKind.EXPRESSION, VariableKind.AGGREGATE})

# Variables whose values are safe to feed into a value provider.
IMMUTABLE_KINDS = frozenset({VariableKind.VALUE_PROVIDER, VariableKind.AGGREGATE})


class AggregateFunction(str, Enum):
    """Aggregate reductions."""
    SUM = "Sum"
    COUNT = "Count"
    AVERAGE = "Average"
    MIN = "Min"
    MAX = "Max"
    ALL = "All"
    ANY = "Any"

    @classmethod
    def parse(cls, value: Union[str, "AggregateFunction"]) -> "AggregateFunction":
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ConfigurationError(
            f"Aggregate function '{value}' is not supported",
            {"aggregate_function": value}
        )


@dataclass(frozen=True)
class ParameterDefinition:
    """Invocation parameter."""
    name: str
    value_type: ValueType = ValueType.ANY
    optional: bool = False
    default: Any = None


@dataclass(frozen=True)
class Rule:
    """Compiled rule."""
    name: str
    kind: RuleKind
    rule_set: str = ""
    version: str = "1.0"
    condition_kind: ConditionKind = ConditionKind.NONE
    condition: Optional[str] = None
    variable: Optional[str] = None
    expression: Optional[str] = None
    children: Optional[Tuple["Rule", ...]] = None
    validation_message: Optional[str] = None
    terminate_if_invalid: bool = False
    preload: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Qualified label recorded in the evaluated-rule trail."""
        return f"{self.rule_set}({self.version}).{self.name}"


@dataclass(frozen=True)
class VariableDefinition:
    """Fields shared by every variable variant."""
    name: str
    output: bool = False
    value_type: Optional[ValueType] = None
    preload: Tuple[str, ...] = ()

    kind = None


@dataclass(frozen=True)
class ConstantVariable(VariableDefinition):
    default: Any = None

    kind = VariableKind.CONSTANT


@dataclass(frozen=True)
class ValueProviderVariable(VariableDefinition):
    provider: Optional[Callable[..., Any]] = None
    parameters: Tuple[str, ...] = ()

    kind = VariableKind.VALUE_PROVIDER


@dataclass(frozen=True)
class AggregateVariable(VariableDefinition):
    collection: str = ""
    function: AggregateFunction = AggregateFunction.COUNT
    expression: Optional[str] = None
    filter: Optional[str] = None
    sub_rules: Optional[Tuple[Rule, ...]] = None

    kind = VariableKind.AGGREGATE


@dataclass(frozen=True)
class FieldValueVariable(VariableDefinition):
    record: str = ""
    field_name: str = ""

    kind = VariableKind.FIELD_VALUE


@dataclass(frozen=True)
class ExpressionVariable(VariableDefinition):
    expression: str = ""

    kind = VariableKind.EXPRESSION


@dataclass(frozen=True)
class RuleGraph:
    """Immutable, shareable result of building one or more rule sets."""
    parameters: Tuple[ParameterDefinition, ...]
    variables: Mapping[str, VariableDefinition]
    rules: Tuple[Rule, ...]
    preload: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.variables, MappingProxyType):
            object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    @property
    def parameter_names(self) -> frozenset:
        return frozenset(p.name for p in self.parameters)

    @property
    def output_names(self) -> List[str]:
        return [name for name, definition in self.variables.items() if definition.output]


@dataclass
class EvaluationResult:
    """Result of one engine invocation."""
    is_valid: bool
    outputs: Dict[str, Any] = field(default_factory=dict)
    evaluated_rules: List[str] = field(default_factory=list)
    validation_messages: List[str] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
