"""
Shared error handling for the ruleflow engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class RuleEngineException(Exception):
    """Base exception for rule engine failures."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(RuleEngineException):
    """Malformed rules, unknown kinds, bad function calls or preloads."""

    def __init__(self, message: str = "Invalid rule configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class CircularDependencyError(ConfigurationError):
    """Preload declarations that depend on themselves."""

    def __init__(self, cycle, details: Optional[Dict[str, Any]] = None):
        self.cycle = list(cycle)
        super().__init__(
            f"Circular preload dependency: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle, **(details or {})}
        )
        self.code = "CIRCULAR_DEPENDENCY"


class ParameterError(RuleEngineException):
    """Missing or mistyped invocation parameters."""

    def __init__(self, parameter: str, message: str = "Invalid parameter", details: Optional[Dict[str, Any]] = None):
        self.parameter = parameter
        super().__init__("PARAMETER_ERROR", message, {"parameter": parameter, **(details or {})})


class ResolutionError(RuleEngineException):
    """A variable could not produce a value."""

    def __init__(self, message: str = "Variable resolution failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("RESOLUTION_ERROR", message, details)


class EvaluationError(RuleEngineException):
    """Expression evaluation failures, including evaluator limits."""

    def __init__(self, message: str = "Expression evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("EVALUATION_ERROR", message, details)


class TypeCoercionError(RuleEngineException):
    """A value cannot be converted to a declared semantic type."""

    def __init__(self, message: str = "Type coercion failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("COERCION_ERROR", message, details)
