"""
Unit tests for the execution context and lazy variable resolution.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ruleflow.rules.models import (
    ConstantVariable, ExpressionVariable, FieldValueVariable, ValueProviderVariable
)
from ruleflow.rules.types import ValueType
from ruleflow.shared.errors import (
    CircularDependencyError, ConfigurationError, EvaluationError, ResolutionError, TypeCoercionError
)


class TestExecutionContext:
    """Test cases for ExecutionContext bindings."""

    @pytest.mark.asyncio
    async def test_get_parameter_and_unknown(self, make_context):
        context = make_context({"a": 1})
        assert await context.get("a") == 1
        assert await context.get("nope") is None

    @pytest.mark.asyncio
    async def test_constant_variable(self, make_context):
        context = make_context(variables=[ConstantVariable("limit", default=10)])
        assert await context.get("limit") == 10
        assert context.bindings["limit"] == 10

    def test_parameters_are_immutable(self, make_context):
        context = make_context({"a": 1})
        with pytest.raises(ConfigurationError, match="cannot be assigned"):
            context.set("a", 2)

    def test_computed_variables_are_immutable(self, make_context):
        context = make_context(variables=[ExpressionVariable("total", expression="1 + 1")])
        with pytest.raises(ConfigurationError, match="cannot be assigned"):
            context.set("total", 3)

    def test_constant_can_be_reassigned(self, make_context):
        context = make_context(variables=[ConstantVariable("count", default=0)])
        context.set("count", 5)
        assert context.bindings["count"] == 5

    def test_set_coerces_declared_type(self, make_context):
        context = make_context(variables=[ConstantVariable("rate", value_type=ValueType.FLOAT, default=0.0)])
        context.set("rate", 2)
        assert context.bindings["rate"] == 2.0
        assert isinstance(context.bindings["rate"], float)

    def test_set_coercion_failure(self, make_context):
        context = make_context(variables=[ConstantVariable("rate", value_type=ValueType.INT)])
        with pytest.raises(TypeCoercionError):
            context.set("rate", "abc")

    @pytest.mark.asyncio
    async def test_preload_undeclared(self, make_context):
        context = make_context()
        with pytest.raises(ConfigurationError, match="undeclared"):
            await context.preload("ghost")

    @pytest.mark.asyncio
    async def test_preload_skips_bound_names(self, make_context):
        provider = MagicMock(return_value=1)
        context = make_context(variables=[ValueProviderVariable("x", provider=provider)])

        await context.preload_all(["x", "x"])
        await context.get("x")

        provider.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_clone_isolates_writes(self, make_context):
        """Test writes in a clone never reach the parent."""
        context = make_context({"a": 1}, variables=[ConstantVariable("x", default=0)])
        await context.get("x")

        scope = context.clone(seed={"Salary": 100})
        scope.set("x", 9)
        scope.set("Bonus", 5)

        assert scope.snapshot()["Salary"] == 100
        assert scope.bindings["a"] == 1
        assert context.bindings["x"] == 0
        assert "Bonus" not in context.bindings
        assert scope.evaluated_rules == []
        assert scope.is_valid

    def test_clone_keeps_parameters_immutable(self, make_context):
        context = make_context({"a": 1})
        with pytest.raises(ConfigurationError):
            context.clone().set("a", 2)

    def test_render_uses_bindings(self, make_context):
        context = make_context({"name": "Ann"})
        assert context.render("Hi {{name}}") == "Hi Ann"


class TestVariableResolution:
    """Test cases for each variable kind."""

    @pytest.mark.asyncio
    async def test_value_provider_sync(self, make_context):
        provider = MagicMock(return_value=42)
        context = make_context({"id": 7}, variables=[ValueProviderVariable("score", provider=provider, parameters=("id",))])

        assert await context.get("score") == 42
        assert await context.get("score") == 42
        provider.assert_called_once_with(7)

    @pytest.mark.asyncio
    async def test_value_provider_async(self, make_context):
        provider = AsyncMock(return_value={"Salary": 10})
        context = make_context({"id": 7}, variables=[ValueProviderVariable("employee", provider=provider, parameters=("id",))])

        assert await context.get("employee") == {"Salary": 10}
        provider.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_value_provider_chained_on_provider(self, make_context):
        """Test providers may take other providers as inputs."""
        context = make_context({"id": 2}, variables=[
            ValueProviderVariable("base", provider=lambda i: i * 10, parameters=("id",)),
            ValueProviderVariable("scaled", provider=lambda b: b + 1, parameters=("base",)),
        ])
        assert await context.get("scaled") == 21

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mutable", [
        ConstantVariable("input", default=1),
        ExpressionVariable("input", expression="1"),
        FieldValueVariable("input", record="rec", field_name="x"),
    ])
    async def test_value_provider_rejects_mutable_inputs(self, make_context, mutable):
        provider = MagicMock()
        context = make_context(variables=[
            mutable,
            ValueProviderVariable("out", provider=provider, parameters=("input",)),
        ])

        with pytest.raises(ConfigurationError, match="mutable value 'input'"):
            await context.get("out")
        provider.assert_not_called()

    @pytest.mark.asyncio
    async def test_value_provider_rejects_unknown_inputs(self, make_context):
        context = make_context(variables=[ValueProviderVariable("out", provider=MagicMock(), parameters=("local",))])
        with pytest.raises(ConfigurationError):
            await context.get("out")

    @pytest.mark.asyncio
    async def test_value_provider_result_type(self, make_context):
        context = make_context(variables=[
            ValueProviderVariable("count", value_type=ValueType.INT, provider=lambda: "12")
        ])
        assert await context.get("count") == 12

    @pytest.mark.asyncio
    async def test_field_value_from_mapping_and_object(self, make_context):
        context = make_context(
            {"employee": {"Name": "Ann"}, "team": SimpleNamespace(size=4)},
            variables=[
                FieldValueVariable("name", record="employee", field_name="Name"),
                FieldValueVariable("size", record="team", field_name="size"),
                FieldValueVariable("missing", record="employee", field_name="Age"),
            ],
        )
        assert await context.get("name") == "Ann"
        assert await context.get("size") == 4
        assert await context.get("missing") is None

    @pytest.mark.asyncio
    async def test_field_value_errors(self, make_context):
        context = make_context(
            {"nothing": None, "team": SimpleNamespace(size=4)},
            variables=[
                FieldValueVariable("a", record="nothing", field_name="x"),
                FieldValueVariable("b", record="team", field_name="colour"),
            ],
        )
        with pytest.raises(ResolutionError, match="is null"):
            await context.get("a")
        with pytest.raises(ResolutionError, match="not found"):
            await context.get("b")

    @pytest.mark.asyncio
    async def test_expression_variable_with_preload(self, make_context):
        """Test expression variables see names they preload."""
        context = make_context({"a": 2}, variables=[
            ExpressionVariable("double", expression="a * 2"),
            ExpressionVariable("quad", expression="double * 2", preload=("double",)),
        ])
        assert await context.get("quad") == 8
        assert context.bindings["double"] == 4

    @pytest.mark.asyncio
    async def test_expression_variable_without_preload(self, make_context):
        context = make_context(variables=[
            ExpressionVariable("double", expression="2"),
            ExpressionVariable("quad", expression="double * 2"),
        ])
        with pytest.raises(EvaluationError, match="not defined"):
            await context.get("quad")

    @pytest.mark.asyncio
    async def test_preload_cycle(self, make_context):
        context = make_context(variables=[
            ExpressionVariable("a", expression="b", preload=("b",)),
            ExpressionVariable("b", expression="a", preload=("a",)),
        ])
        with pytest.raises(CircularDependencyError) as exc_info:
            await context.get("a")
        assert exc_info.value.cycle == ["a", "b", "a"]
        assert exc_info.value.code == "CIRCULAR_DEPENDENCY"

    @pytest.mark.asyncio
    async def test_preload_order(self, make_context):
        calls = []

        def provider(name):
            def load():
                calls.append(name)
                return name
            return load

        context = make_context(variables=[
            ValueProviderVariable("first", provider=provider("first")),
            ValueProviderVariable("second", provider=provider("second")),
            ExpressionVariable("both", expression="first + second", preload=("second", "first")),
        ])
        assert await context.get("both") == "firstsecond"
        assert calls == ["second", "first"]
