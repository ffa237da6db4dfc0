"""
Rules engine builder.

Collects host registrations (parameters, variables, functions and
collaborators), merges one or more rule set documents into a single rule
graph, validates it and produces a ``RulesEngine``.
"""

import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..cache.function_cache import FunctionResultCache
from ..documents.ruleset import (
    AggregateVariableDocument, RuleDefinitionDocument, RuleSetDocument, RuleSetSource, load_rule_set
)
from ..evaluation.base import ExpressionEvaluator, TemplateRenderer
from ..evaluation.python_engine import PythonExpressionEvaluator
from ..evaluation.templates import get_template_renderer
from ..functions.invoker import FunctionInvoker, RegisteredFunction
from ..functions.registry import ExpressionFunction, HostFunction, TypeSpec
from ..shared.config import EngineSettings, get_settings
from ..shared.errors import ConfigurationError
from ..shared.logging import get_logger
from ..shared.metrics import MetricsCollector, get_metrics_collector
from .engine import EngineRuntime, RulesEngine
from .executor import RuleExecutor
from .models import (
    AggregateFunction, AggregateVariable, ConditionKind, ConstantVariable, ExpressionVariable,
    FieldValueVariable, ParameterDefinition, Rule, RuleGraph, RuleKind, ValueProviderVariable,
    VariableDefinition
)
from .types import ValueType, parse_value_type


def _optional_type(value_type) -> Optional[ValueType]:
    return None if value_type is None else parse_value_type(value_type)


def _append_unique(target: List[str], names: Iterable[str]):
    for name in names:
        if name not in target:
            target.append(name)


class RulesEngineBuilder:
    """Fluent registration API that produces a ``RulesEngine``."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()
        self.logger = get_logger("ruleflow.rules.builder")
        self._parameters: Dict[str, ParameterDefinition] = {}
        self._variables: Dict[str, VariableDefinition] = {}
        self._functions: Dict[str, RegisteredFunction] = {}
        self._evaluator: Optional[ExpressionEvaluator] = None
        self._bundled_evaluator = False
        self._renderer: Optional[TemplateRenderer] = None
        self._metrics: Optional[MetricsCollector] = None

    # Collaborators

    def use_settings(self, settings: EngineSettings) -> "RulesEngineBuilder":
        self.settings = settings
        return self

    def use_evaluator(self, evaluator: Optional[ExpressionEvaluator] = None) -> "RulesEngineBuilder":
        """Set the expression evaluator.

        With no argument the bundled ``PythonExpressionEvaluator`` is created at
        build time with the expression limits from the engine settings.
        """
        self._evaluator = evaluator
        self._bundled_evaluator = evaluator is None
        return self

    def use_template_renderer(self, renderer: TemplateRenderer) -> "RulesEngineBuilder":
        self._renderer = renderer
        return self

    def use_metrics(self, metrics: MetricsCollector) -> "RulesEngineBuilder":
        self._metrics = metrics
        return self

    # Registrations

    def add_parameter(
        self,
        name: str,
        value_type: Any = None,
        optional: bool = False,
        default: Any = None,
    ) -> "RulesEngineBuilder":
        """Declare an invocation parameter the rule sets may rely on."""
        if not name:
            raise ConfigurationError("Parameter name cannot be empty")
        if name in self._parameters or name in self._variables:
            raise ConfigurationError(f"Name '{name}' is already registered", {"name": name})
        self._parameters[name] = ParameterDefinition(name, parse_value_type(value_type), optional, default)
        return self

    def add_variable(
        self,
        name: str,
        value: Any = None,
        output: bool = False,
        value_type: Any = None,
        preload: Optional[Sequence[str]] = None,
    ) -> "RulesEngineBuilder":
        """Register a constant variable. Rules may reassign it."""
        return self._register(ConstantVariable(
            name, output, _optional_type(value_type), tuple(preload or ()), default=value
        ))

    def add_lazy_variable(
        self,
        name: str,
        parameters: Sequence[str],
        provider: Callable[..., Any],
        value_type: Any = None,
        output: bool = False,
        preload: Optional[Sequence[str]] = None,
    ) -> "RulesEngineBuilder":
        """Register a variable computed on first use by a sync or async provider."""
        if provider is None or not callable(provider):
            raise ConfigurationError(f"Variable '{name}' requires a callable value provider", {"name": name})
        return self._register(ValueProviderVariable(
            name, output, _optional_type(value_type), tuple(preload or ()),
            provider=provider, parameters=tuple(parameters or ())
        ))

    def add_lazy_variables(
        self,
        names: Sequence[str],
        parameters: Sequence[str],
        provider: Callable[..., Any],
        value_type: Any = None,
    ) -> "RulesEngineBuilder":
        """Register several variables filled from one provider call.

        The provider returns a record (mapping or object); each name reads the
        matching field. The record itself is held in a hidden variable so the
        provider runs at most once per invocation.
        """
        if not names:
            raise ConfigurationError("At least one variable name is required")
        record = f"__record_{uuid.uuid4().hex}"
        self.add_lazy_variable(record, parameters, provider)
        for name in names:
            self.add_field_variable(name, record, name, value_type=value_type)
        return self

    def add_field_variable(
        self,
        name: str,
        record_variable: str,
        field_name: str,
        output: bool = False,
        value_type: Any = None,
        preload: Optional[Sequence[str]] = None,
    ) -> "RulesEngineBuilder":
        return self._register(FieldValueVariable(
            name, output, _optional_type(value_type), tuple(preload or ()),
            record=record_variable, field_name=field_name
        ))

    def add_expression_variable(
        self,
        name: str,
        expression: str,
        output: bool = False,
        value_type: Any = None,
        preload: Optional[Sequence[str]] = None,
    ) -> "RulesEngineBuilder":
        if not expression:
            raise ConfigurationError(f"Variable '{name}' requires an expression", {"name": name})
        return self._register(ExpressionVariable(
            name, output, _optional_type(value_type), tuple(preload or ()), expression=expression
        ))

    def add_function(
        self,
        name: str,
        implementation: Callable[..., Any],
        cache: bool = False,
        param_types: Optional[Sequence[TypeSpec]] = None,
        return_type: TypeSpec = None,
    ) -> "RulesEngineBuilder":
        """Register a host function callable from expressions."""
        if name in self._functions:
            raise ConfigurationError(f"Function '{name}' is already registered", {"function": name})
        self._functions[name] = HostFunction.create(name, implementation, cache, param_types, return_type)
        return self

    def _register(self, definition: VariableDefinition) -> "RulesEngineBuilder":
        if not definition.name:
            raise ConfigurationError("Variable name cannot be empty")
        if definition.name in self._variables or definition.name in self._parameters:
            raise ConfigurationError(f"Name '{definition.name}' is already registered", {"name": definition.name})
        self._variables[definition.name] = definition
        return self

    # Build

    def build(self, *rule_sets: RuleSetSource) -> RulesEngine:
        """Merge ``rule_sets`` in order and build an engine over them."""
        if not rule_sets:
            raise ConfigurationError("At least one rule set is required")
        if self._evaluator is None and not self._bundled_evaluator:
            raise ConfigurationError("An expression evaluator is required; call use_evaluator() before build()")

        documents = [load_rule_set(source) for source in rule_sets]

        parameters: Dict[str, ParameterDefinition] = {}
        variables: Dict[str, VariableDefinition] = dict(self._variables)
        functions: Dict[str, RegisteredFunction] = dict(self._functions)
        rules: List[Rule] = []
        preload: List[str] = []

        for document in documents:
            self._merge_parameters(document, parameters)
            self._merge_variables(document, parameters, variables)
            self._merge_functions(document, functions, preload)
            _append_unique(preload, document.preload_variables)
            self._merge_rules(document, rules)

        known = set(variables) | set(parameters)
        self._validate_preloads(rules, variables, functions, preload, known)

        graph = RuleGraph(tuple(parameters.values()), variables, tuple(rules), tuple(preload))

        metrics = None
        if self.settings.metrics_enabled:
            metrics = self._metrics or get_metrics_collector()

        invoker = FunctionInvoker(
            functions,
            cache=FunctionResultCache(metrics),
            cache_enabled=self.settings.function_cache_enabled,
            metrics=metrics,
        )
        runtime = EngineRuntime(
            evaluator=self._evaluator or PythonExpressionEvaluator.from_settings(self.settings),
            renderer=self._renderer or get_template_renderer(self.settings.template_engine),
            executor=RuleExecutor(),
            invoker=invoker,
        )

        self.logger.info(
            "Rules engine built",
            rule_sets=[f"{d.name}({d.version})" for d in documents],
            rules=len(rules),
            parameters=len(parameters),
            variables=len(variables),
            functions=len(functions),
        )
        return RulesEngine(graph, runtime, metrics)

    def _merge_parameters(self, document: RuleSetDocument, parameters: Dict[str, ParameterDefinition]):
        for declared in document.parameters:
            registered = self._parameters.get(declared.name)
            if registered is None:
                raise ConfigurationError(
                    f"Parameter '{declared.name}' in rule set '{document.name}' is not registered",
                    {"parameter": declared.name, "rule_set": document.name}
                )
            declared_type = parse_value_type(declared.type)
            if declared_type != registered.value_type:
                raise ConfigurationError(
                    f"Parameter '{declared.name}' is declared as '{declared_type.value}' "
                    f"but registered as '{registered.value_type.value}'",
                    {"parameter": declared.name, "rule_set": document.name}
                )
            if declared.name in parameters:
                continue
            parameters[declared.name] = ParameterDefinition(
                declared.name,
                registered.value_type,
                optional=declared.is_optional or registered.optional,
                default=declared.default_value if declared.default_value is not None else registered.default,
            )

    def _merge_variables(
        self,
        document: RuleSetDocument,
        parameters: Dict[str, ParameterDefinition],
        variables: Dict[str, VariableDefinition],
    ):
        def claim(name: str):
            if name in variables or name in parameters or name in self._parameters:
                raise ConfigurationError(
                    f"Variable '{name}' in rule set '{document.name}' is already defined",
                    {"variable": name, "rule_set": document.name}
                )

        for aggregate in document.aggregate_variables:
            claim(aggregate.name)
            variables[aggregate.name] = self._compile_aggregate(aggregate, document)

        for simple in document.simple_variables:
            claim(simple.name)
            variables[simple.name] = ExpressionVariable(
                simple.name, preload=tuple(simple.variables_to_preload), expression=simple.expression
            )

    def _compile_aggregate(self, aggregate: AggregateVariableDocument, document: RuleSetDocument) -> AggregateVariable:
        function = AggregateFunction.parse(aggregate.aggregate_function)
        if function != AggregateFunction.COUNT and not aggregate.expression:
            raise ConfigurationError(
                f"Aggregate '{aggregate.name}' requires an expression for {function.value}",
                {"variable": aggregate.name, "rule_set": document.name}
            )
        sub_rules = None
        if aggregate.sub_rules:
            sub_rules = tuple(self._compile_rule(r, document) for r in aggregate.sub_rules)
        return AggregateVariable(
            aggregate.name,
            preload=tuple(aggregate.variables_to_preload),
            collection=aggregate.collection_variable,
            function=function,
            expression=aggregate.expression,
            filter=aggregate.filter_condition,
            sub_rules=sub_rules,
        )

    def _merge_functions(
        self,
        document: RuleSetDocument,
        functions: Dict[str, RegisteredFunction],
        preload: List[str],
    ):
        for definition in document.function_definitions:
            if definition.name in functions:
                raise ConfigurationError(
                    f"Function '{definition.name}' in rule set '{document.name}' is already defined",
                    {"function": definition.name, "rule_set": document.name}
                )
            functions[definition.name] = ExpressionFunction(
                definition.name,
                tuple(definition.parameters),
                definition.expression,
                tuple(definition.variables_to_preload),
            )
            _append_unique(preload, definition.variables_to_preload)

    def _compile_rule(self, definition: RuleDefinitionDocument, document: RuleSetDocument) -> Rule:
        children = None
        if definition.sub_rules is not None:
            children = tuple(self._compile_rule(child, document) for child in definition.sub_rules)
        return Rule(
            name=definition.name,
            kind=RuleKind.parse(definition.type),
            rule_set=document.name,
            version=document.version,
            condition_kind=ConditionKind.parse(definition.condition_type),
            condition=definition.condition,
            variable=definition.variable,
            expression=definition.expression,
            children=children,
            validation_message=definition.validation_message_template,
            terminate_if_invalid=definition.terminate_if_invalid,
            preload=tuple(definition.variables_to_preload),
        )

    def _merge_rules(self, document: RuleSetDocument, rules: List[Rule]):
        """Append new top-level rules; a same-named rule replaces the earlier one in place."""
        positions = {rule.name: index for index, rule in enumerate(rules)}
        for definition in document.rules:
            rule = self._compile_rule(definition, document)
            index = positions.get(rule.name)
            if index is None:
                positions[rule.name] = len(rules)
                rules.append(rule)
                continue
            if not definition.sub_rules:
                # keep the replaced rule's children
                rule = replace(rule, children=rules[index].children)
            rules[index] = rule
            self.logger.debug("Rule overridden", rule=rule.name, rule_set=document.name)

    def _validate_preloads(
        self,
        rules: Sequence[Rule],
        variables: Dict[str, VariableDefinition],
        functions: Dict[str, RegisteredFunction],
        preload: Sequence[str],
        known: set,
    ):
        def check(names: Iterable[str], owner: str):
            for name in names:
                if name not in known:
                    raise ConfigurationError(
                        f"Variable '{name}' preloaded by {owner} is not defined",
                        {"variable": name, "owner": owner}
                    )

        def walk(rule_list: Optional[Sequence[Rule]]):
            for rule in rule_list or ():
                check(rule.preload, f"rule '{rule.label}'")
                walk(rule.children)

        check(preload, "the rule set")
        walk(rules)
        for definition in variables.values():
            check(definition.preload, f"variable '{definition.name}'")
        for function in functions.values():
            if isinstance(function, ExpressionFunction):
                check(function.preload, f"function '{function.name}'")
