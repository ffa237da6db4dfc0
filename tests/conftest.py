"""
Shared fixtures for ruleflow tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from ruleflow.evaluation.python_engine import PythonExpressionEvaluator
from ruleflow.evaluation.templates import BasicTemplateRenderer
from ruleflow.functions.invoker import FunctionInvoker
from ruleflow.rules.builder import RulesEngineBuilder
from ruleflow.rules.context import ExecutionContext
from ruleflow.rules.engine import EngineRuntime
from ruleflow.rules.executor import RuleExecutor
from ruleflow.rules.models import ParameterDefinition, RuleGraph
from ruleflow.shared.config import EngineSettings
from ruleflow.shared.metrics import MetricsCollector


@pytest.fixture
def settings():
    """Engine settings with metrics recording off."""
    return EngineSettings(metrics_enabled=False, template_engine="basic")


@pytest.fixture
def evaluator():
    """Bundled expression evaluator."""
    return PythonExpressionEvaluator()


@pytest.fixture
def registry():
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Metrics collector bound to an isolated registry."""
    return MetricsCollector("ruleflow-test", registry)


@pytest.fixture
def builder(settings, evaluator):
    """Builder wired with the bundled evaluator."""
    return RulesEngineBuilder(settings).use_evaluator(evaluator)


@pytest.fixture
def rule_set():
    """Factory for rule set documents in their stored JSON shape."""
    def factory(name="Test", rules=(), version="1.0", **sections):
        document = {"Name": name, "Version": version, "Rules": list(rules)}
        document.update(sections)
        return document
    return factory


@pytest.fixture
def make_context(evaluator):
    """Factory for execution contexts over a hand-built rule graph."""
    def factory(parameters=None, variables=(), rules=(), functions=None, renderer=None):
        parameters = dict(parameters or {})
        graph = RuleGraph(
            tuple(ParameterDefinition(name) for name in parameters),
            {definition.name: definition for definition in variables},
            tuple(rules),
        )
        runtime = EngineRuntime(
            evaluator=evaluator,
            renderer=renderer or BasicTemplateRenderer(),
            executor=RuleExecutor(),
            invoker=FunctionInvoker(functions or {}),
        )
        return ExecutionContext(graph, runtime, parameters)
    return factory
