"""
Unit tests for the rule executor state machine.
"""

import pytest

from ruleflow.rules.executor import RuleExecutor
from ruleflow.rules.models import ConditionKind, ConstantVariable, Rule, RuleKind, ValueProviderVariable
from ruleflow.shared.errors import ConfigurationError


def assign(name, variable, expression, condition_kind=ConditionKind.NONE, condition=None, **kwargs):
    return Rule(
        name, RuleKind.ASSIGN, rule_set="Payroll", version="2.0",
        condition_kind=condition_kind, condition=condition,
        variable=variable, expression=expression, **kwargs
    )


def validate(name, message=None, terminate=False, condition_kind=ConditionKind.NONE, condition=None):
    return Rule(
        name, RuleKind.VALIDATE, rule_set="Payroll", version="2.0",
        condition_kind=condition_kind, condition=condition,
        validation_message=message, terminate_if_invalid=terminate
    )


def execute(name, children, condition_kind=ConditionKind.NONE, condition=None):
    return Rule(
        name, RuleKind.EXECUTE, rule_set="Payroll", version="2.0",
        condition_kind=condition_kind, condition=condition, children=children
    )


class TestRuleExecutor:
    """Test cases for RuleExecutor."""

    @pytest.fixture
    def executor(self):
        return RuleExecutor()

    @pytest.fixture
    def context(self, make_context):
        """Context with a mutable result variable."""
        def factory(parameters=None, variables=()):
            return make_context(parameters, variables=[ConstantVariable("result", default=0), *variables])
        return factory

    async def run(self, executor, context, rules):
        await context.get("result")
        completed = await executor.execute_rules(rules, context)
        return completed, context.bindings["result"]

    @pytest.mark.asyncio
    async def test_assign_records_label(self, executor, context):
        ctx = context({"a": 4, "b": 5})
        completed, result = await self.run(executor, ctx, [assign("Add", "result", "a + b")])

        assert completed is True
        assert result == 9
        assert ctx.evaluated_rules == ["Payroll(2.0).Add"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("a,expected,label", [
        (4, 1, "Small"),
        (50, 100, "Medium"),
        (500, 10, "Large"),
    ])
    async def test_if_else_chain(self, executor, context, a, expected, label):
        """Test exactly one branch of an if / else if / else chain runs."""
        rules = [
            assign("Small", "result", "result + 1", ConditionKind.IF, "a < 10"),
            assign("Medium", "result", "result + 100", ConditionKind.ELSE_IF, "a < 100"),
            assign("Large", "result", "result + 10", ConditionKind.ELSE),
        ]
        ctx = context({"a": a})
        _, result = await self.run(executor, ctx, rules)

        assert result == expected
        assert ctx.evaluated_rules == [f"Payroll(2.0).{label}"]

    @pytest.mark.asyncio
    async def test_unconditional_rule_resets_chain(self, executor, context):
        """Test an else after an unconditional rule is evaluated again."""
        rules = [
            assign("First", "result", "1", ConditionKind.IF, "true"),
            assign("Plain", "result", "result + 1"),
            assign("Orphan", "result", "result + 10", ConditionKind.ELSE),
        ]
        ctx = context()
        _, result = await self.run(executor, ctx, rules)

        assert result == 12
        assert len(ctx.evaluated_rules) == 3

    @pytest.mark.asyncio
    async def test_false_condition_does_not_reset_chain(self, executor, context):
        rules = [
            assign("A", "result", "1", ConditionKind.IF, "true"),
            assign("B", "result", "2", ConditionKind.IF, "false"),
            assign("C", "result", "3", ConditionKind.ELSE),
        ]
        ctx = context()
        _, result = await self.run(executor, ctx, rules)

        assert result == 3

    @pytest.mark.asyncio
    async def test_missing_condition(self, executor, context):
        ctx = context()
        with pytest.raises(ConfigurationError, match="requires a condition"):
            await self.run(executor, ctx, [assign("A", "result", "1", ConditionKind.IF)])

    @pytest.mark.asyncio
    async def test_assign_requires_target_and_expression(self, executor, context):
        with pytest.raises(ConfigurationError, match="no target"):
            await self.run(executor, context(), [assign("A", None, "1")])
        with pytest.raises(ConfigurationError, match="no expression"):
            await self.run(executor, context(), [assign("A", "result", None)])

    @pytest.mark.asyncio
    async def test_execute_children_in_trail_order(self, executor, context):
        rules = [
            execute("Group", (
                assign("Inner1", "result", "result + 1"),
                assign("Inner2", "result", "result * 10"),
            )),
            assign("After", "result", "result + 5"),
        ]
        ctx = context()
        _, result = await self.run(executor, ctx, rules)

        assert result == 15
        assert ctx.evaluated_rules == [
            "Payroll(2.0).Group", "Payroll(2.0).Inner1", "Payroll(2.0).Inner2", "Payroll(2.0).After"
        ]

    @pytest.mark.asyncio
    async def test_execute_without_children(self, executor, context):
        with pytest.raises(ConfigurationError, match="no child rules"):
            await self.run(executor, context(), [execute("Group", None)])

    @pytest.mark.asyncio
    async def test_validation_failure_continues(self, executor, context):
        rules = [
            validate("Check", "Amount {{amount}} is too high", condition_kind=ConditionKind.IF, condition="amount > 10"),
            assign("After", "result", "1"),
        ]
        ctx = context({"amount": 20})
        completed, result = await self.run(executor, ctx, rules)

        assert completed is True
        assert result == 1
        assert ctx.is_valid is False
        assert ctx.validation_messages == ["Amount 20 is too high"]

    @pytest.mark.asyncio
    async def test_validation_failure_in_children_continues_outer_walk(self, executor, context):
        """Test a non-terminating validation inside children lets both levels continue."""
        rules = [
            execute("Outer", (
                validate("Check", "checked"),
                assign("Inner", "result", "result + 1"),
            )),
            assign("After", "result", "result + 10"),
        ]
        ctx = context()
        completed, result = await self.run(executor, ctx, rules)

        assert completed is True
        assert result == 11
        assert ctx.is_valid is False
        assert ctx.validation_messages == ["checked"]
        assert ctx.evaluated_rules == [
            "Payroll(2.0).Outer", "Payroll(2.0).Check", "Payroll(2.0).Inner", "Payroll(2.0).After"
        ]

    @pytest.mark.asyncio
    async def test_validation_without_message(self, executor, context):
        ctx = context()
        await self.run(executor, ctx, [validate("Check")])

        assert ctx.is_valid is False
        assert ctx.validation_messages == []

    @pytest.mark.asyncio
    async def test_terminate_stops_every_level(self, executor, context):
        """Test a terminating validation inside children stops the outer walk."""
        rules = [
            execute("Outer", (
                execute("Inner", (
                    validate("Stop", "stopped", terminate=True),
                    assign("SkippedInner", "result", "1"),
                )),
                assign("SkippedMiddle", "result", "2"),
            )),
            assign("SkippedOuter", "result", "3"),
        ]
        ctx = context()
        completed, result = await self.run(executor, ctx, rules)

        assert completed is False
        assert result == 0
        assert ctx.evaluated_rules == ["Payroll(2.0).Outer", "Payroll(2.0).Inner", "Payroll(2.0).Stop"]
        assert ctx.validation_messages == ["stopped"]

    @pytest.mark.asyncio
    async def test_rule_preload(self, executor, context):
        """Test a rule's preload list makes lazy values visible."""
        calls = []

        ctx = context(variables=[ValueProviderVariable("base", provider=lambda: calls.append(1) or 7)])

        _, result = await self.run(executor, ctx, [assign("UseBase", "result", "base * 2", preload=("base",))])

        assert result == 14
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_assign_to_parameter_fails(self, executor, context):
        with pytest.raises(ConfigurationError, match="cannot be assigned"):
            await self.run(executor, context({"a": 1}), [assign("A", "a", "2")])
