"""
Shared metrics configuration for the ruleflow engine.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for engine instances.

    Metrics are registered into ``registry`` when one is given; with no
    registry they stay unregistered so several engines can coexist in one
    process.
    """

    def __init__(self, service_name: str = "ruleflow", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up engine metrics."""

        # Engine info
        self._metrics["engine_info"] = Info(
            "ruleflow_engine",
            "Rule engine information",
            registry=self.registry
        )
        self._metrics["engine_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # Invocation metrics
        self._metrics["invocations_total"] = Counter(
            "ruleflow_invocations_total",
            "Total rule engine invocations",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["invocation_duration_seconds"] = Histogram(
            "ruleflow_invocation_duration_seconds",
            "Rule engine invocation duration in seconds",
            registry=self.registry
        )

        self._metrics["rules_evaluated_total"] = Counter(
            "ruleflow_rules_evaluated_total",
            "Total rules whose bodies ran",
            registry=self.registry
        )

        self._metrics["validation_messages_total"] = Counter(
            "ruleflow_validation_messages_total",
            "Total validation messages produced",
            registry=self.registry
        )

        # Function metrics
        self._metrics["function_calls_total"] = Counter(
            "ruleflow_function_calls_total",
            "Total host function calls",
            ["function"],
            registry=self.registry
        )

        self._metrics["function_cache_hits_total"] = Counter(
            "ruleflow_function_cache_hits_total",
            "Total function cache hits",
            ["function"],
            registry=self.registry
        )

        self._metrics["function_cache_misses_total"] = Counter(
            "ruleflow_function_cache_misses_total",
            "Total function cache misses",
            ["function"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "ruleflow_errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

    def record_invocation(self, outcome: str, rules_evaluated: int = 0, validation_messages: int = 0):
        """Record the outcome of one engine invocation."""
        self._metrics["invocations_total"].labels(outcome=outcome).inc()
        if rules_evaluated:
            self._metrics["rules_evaluated_total"].inc(rules_evaluated)
        if validation_messages:
            self._metrics["validation_messages_total"].inc(validation_messages)

    def record_function_call(self, function: str):
        """Record a host function execution."""
        self._metrics["function_calls_total"].labels(function=function).inc()

    def record_cache_lookup(self, function: str, hit: bool):
        """Record a function cache lookup."""
        name = "function_cache_hits_total" if hit else "function_cache_misses_total"
        self._metrics[name].labels(function=function).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                metric = self._metrics[operation_name]
                (metric.labels(**labels) if labels else metric).observe(duration)


def get_metrics_collector(service_name: str = "ruleflow", registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for an engine."""
    return MetricsCollector(service_name, registry)
