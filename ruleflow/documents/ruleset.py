"""
Rule set document models.

Documents use the JSON field names hosts already store (``Name``,
``Rules``, ``SubRules`` ...); snake_case names are accepted as well.
"""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..shared.errors import ConfigurationError


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RuleDefinitionDocument(_Document):
    """Rule as written in a rule set document."""
    name: str = Field(..., alias="Name", description="Rule name")
    type: str = Field(..., alias="Type", description="assign, execute or validate")
    condition_type: Optional[str] = Field(None, alias="ConditionType", description="if, else if or else")
    condition: Optional[str] = Field(None, alias="Condition", description="Condition expression")
    variables_to_preload: List[str] = Field(default_factory=list, alias="VariablesToPreload")
    variable: Optional[str] = Field(None, alias="Variable", description="Assignment target")
    expression: Optional[str] = Field(None, alias="Expression", description="Assignment expression")
    validation_message_template: Optional[str] = Field(None, alias="ValidationMessageTemplate")
    terminate_if_invalid: bool = Field(False, alias="TerminateIfInvalid")
    sub_rules: Optional[List["RuleDefinitionDocument"]] = Field(None, alias="SubRules")

    @field_validator("variables_to_preload", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []

    @field_validator("terminate_if_invalid", mode="before")
    @classmethod
    def _none_as_false(cls, value):
        return bool(value) if value is not None else False


class ParameterDocument(_Document):
    """Parameter declared by a rule set."""
    name: str = Field(..., alias="Name")
    type: str = Field(..., alias="Type", description="Semantic type tag")
    is_optional: bool = Field(False, alias="IsOptional")
    default_value: Any = Field(None, alias="DefaultValue")


class AggregateVariableDocument(_Document):
    """Aggregate variable declared by a rule set."""
    name: str = Field(..., alias="Name")
    collection_variable: str = Field(..., alias="CollectionVariable")
    expression: Optional[str] = Field(None, alias="Expression", description="Per-row projection")
    filter_condition: Optional[str] = Field(None, alias="FilterCondition")
    aggregate_function: str = Field(..., alias="AggregateFunction")
    sub_rules: Optional[List[RuleDefinitionDocument]] = Field(None, alias="SubRules")
    variables_to_preload: List[str] = Field(default_factory=list, alias="VariablesToPreload")

    @field_validator("variables_to_preload", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class SimpleVariableDocument(_Document):
    """Expression-backed variable declared by a rule set."""
    name: str = Field(..., alias="Name")
    expression: str = Field(..., alias="Expression")
    variables_to_preload: List[str] = Field(default_factory=list, alias="VariablesToPreload")

    @field_validator("variables_to_preload", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class FunctionDefinitionDocument(_Document):
    """Expression-backed function declared by a rule set."""
    name: str = Field(..., alias="Name")
    expression: str = Field(..., alias="Expression")
    parameters: List[str] = Field(default_factory=list, alias="Parameters")
    variables_to_preload: List[str] = Field(default_factory=list, alias="VariablesToPreload")

    @field_validator("parameters", "variables_to_preload", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class RuleSetDocument(_Document):
    """A versioned, named set of rules and the declarations they rely on."""
    name: str = Field(..., alias="Name")
    version: str = Field("1.0", alias="Version")
    rules: List[RuleDefinitionDocument] = Field(default_factory=list, alias="Rules")
    parameters: List[ParameterDocument] = Field(default_factory=list, alias="Parameters")
    preload_variables: List[str] = Field(default_factory=list, alias="PreloadVariables")
    aggregate_variables: List[AggregateVariableDocument] = Field(default_factory=list, alias="AggregateVariables")
    simple_variables: List[SimpleVariableDocument] = Field(default_factory=list, alias="SimpleVariables")
    function_definitions: List[FunctionDefinitionDocument] = Field(
        default_factory=list, alias="RuleFunctionDefinitions"
    )

    @field_validator(
        "rules", "parameters", "preload_variables", "aggregate_variables",
        "simple_variables", "function_definitions", mode="before"
    )
    @classmethod
    def _none_as_empty(cls, value):
        return value or []

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value):
        return "1.0" if value is None else str(value)


RuleSetSource = Union[RuleSetDocument, dict, str, bytes]


def load_rule_set(source: RuleSetSource) -> RuleSetDocument:
    """Parse a rule set from a document, a dict or JSON text."""
    if isinstance(source, RuleSetDocument):
        return source
    try:
        if isinstance(source, (str, bytes)):
            return RuleSetDocument.model_validate_json(source)
        if isinstance(source, dict):
            return RuleSetDocument.model_validate(source)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid rule set document: {e.error_count()} error(s)",
            {"errors": e.errors(include_url=False, include_context=False)}
        )
    raise ConfigurationError(f"Unsupported rule set source type '{type(source).__name__}'")
