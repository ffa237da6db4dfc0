"""
ruleflow: an embeddable, async business-rules engine.

Typical use::

    engine = (
        RulesEngineBuilder()
        .use_evaluator(PythonExpressionEvaluator())
        .add_parameter("a", "int")
        .build(rule_set_json)
    )
    result = await engine.execute({"a": 4})
"""

from .documents.ruleset import RuleSetDocument, load_rule_set
from .evaluation.base import ExpressionEvaluator, TemplateRenderer
from .evaluation.python_engine import PythonExpressionEvaluator
from .evaluation.templates import BasicTemplateRenderer, Jinja2TemplateRenderer
from .rules.builder import RulesEngineBuilder
from .rules.engine import RulesEngine
from .rules.models import EvaluationResult
from .rules.types import ValueType
from .shared.config import EngineSettings, get_settings
from .shared.errors import (
    CircularDependencyError, ConfigurationError, EvaluationError, ParameterError,
    ResolutionError, RuleEngineException, TypeCoercionError
)
from .shared.logging import configure_logging

__version__ = "1.0.0"

__all__ = [
    "BasicTemplateRenderer",
    "CircularDependencyError",
    "ConfigurationError",
    "EngineSettings",
    "EvaluationError",
    "EvaluationResult",
    "ExpressionEvaluator",
    "Jinja2TemplateRenderer",
    "ParameterError",
    "PythonExpressionEvaluator",
    "ResolutionError",
    "RuleEngineException",
    "RuleSetDocument",
    "RulesEngine",
    "RulesEngineBuilder",
    "TemplateRenderer",
    "TypeCoercionError",
    "ValueType",
    "configure_logging",
    "get_settings",
    "load_rule_set",
]
