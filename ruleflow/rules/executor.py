"""
Rule list execution.

Walks a rule list in order under an if / else-if / else chain state
machine, dispatching each rule by kind. A terminating validation failure
stops the walk at every enclosing level.
"""

from typing import Optional, Sequence

from ..shared.errors import ConfigurationError
from ..shared.logging import get_logger
from .models import ConditionKind, Rule, RuleKind

CHAINED_CONDITIONS = (ConditionKind.ELSE_IF, ConditionKind.ELSE)
TESTED_CONDITIONS = (ConditionKind.IF, ConditionKind.ELSE_IF)


class RuleExecutor:
    """Executes rule lists against an execution context."""

    def __init__(self):
        self.logger = get_logger("ruleflow.rules.executor")

    async def execute_rules(self, rules: Optional[Sequence[Rule]], context) -> bool:
        """Execute ``rules`` in order.

        Returns False when a terminating validation rule stopped the walk.
        """
        last_condition: Optional[bool] = None

        for rule in rules or ():
            if last_condition is True and rule.condition_kind in CHAINED_CONDITIONS:
                continue

            if rule.condition_kind in TESTED_CONDITIONS:
                if not rule.condition:
                    raise ConfigurationError(
                        f"Rule '{rule.name}' requires a condition for condition type '{rule.condition_kind.value}'",
                        {"rule": rule.label}
                    )
                last_condition = context.evaluate_condition(rule.condition)
                if not last_condition:
                    continue
            else:
                last_condition = None

            await context.preload_all(rule.preload)

            context.record_rule(rule)

            if not await self._dispatch(rule, context):
                return False

        return True

    async def _dispatch(self, rule: Rule, context) -> bool:
        if rule.kind == RuleKind.ASSIGN:
            return self._assign(rule, context)
        if rule.kind == RuleKind.EXECUTE:
            return await self._execute_children(rule, context)
        if rule.kind == RuleKind.VALIDATE:
            return self._validate(rule, context)
        raise ConfigurationError(f"Unsupported rule type '{rule.kind}'", {"rule": rule.label})

    def _assign(self, rule: Rule, context) -> bool:
        if not rule.variable:
            raise ConfigurationError(f"Rule '{rule.name}' has no target variable", {"rule": rule.label})
        if not rule.expression:
            raise ConfigurationError(f"Rule '{rule.name}' has no expression", {"rule": rule.label})

        value = context.evaluate(rule.expression)
        context.set(rule.variable, value)
        return True

    async def _execute_children(self, rule: Rule, context) -> bool:
        if rule.children is None:
            raise ConfigurationError(f"Rule '{rule.name}' has no child rules", {"rule": rule.label})
        return await self.execute_rules(rule.children, context)

    def _validate(self, rule: Rule, context) -> bool:
        if rule.validation_message:
            context.add_validation_message(context.render(rule.validation_message))

        context.mark_invalid()
        self.logger.debug(
            "Validation rule failed",
            rule=rule.label,
            terminate=rule.terminate_if_invalid
        )

        return not rule.terminate_if_invalid
