"""graphpipe exception classes.

Every error carries a stable ``code`` and renders to the ``{error, details}``
shape returned to API callers. Infrastructure errors keep their full detail
in ``str(exc)`` for logs but expose only a generic ``public_message``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class GraphpipeError(Exception):
    """Base exception for all graphpipe errors."""

    code = "GraphpipeError"
    public_message: Optional[str] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the structured error payload."""
        payload: Dict[str, Any] = {"error": self.code, "message": self.public_message or str(self)}
        if self.details:
            payload["details"] = self.details
        return payload


# ─────────────────────────────────────────────────
# Validation (client-caused)
# ─────────────────────────────────────────────────


@dataclass
class ParameterIssue:
    """A single offending parameter."""

    parameter: str
    code: str  # MissingParameter | TypeMismatch | InvalidEnumValue | OutOfRange | PatternMismatch | InvalidDefinition
    message: str

    def to_dict(self) -> dict:
        return {"parameter": self.parameter, "code": self.code, "message": self.message}


class ValidationError(GraphpipeError):
    """Raised when parameters or request shape fail validation."""

    code = "ValidationError"

    def __init__(self, issues: List[ParameterIssue]) -> None:
        self.issues = list(issues)
        summary = "; ".join(f"{i.parameter}: {i.message}" for i in self.issues)
        super().__init__(
            f"Validation failed: {summary}",
            details={"issues": [i.to_dict() for i in self.issues]},
        )

    @classmethod
    def single(cls, parameter: str, code: str, message: str) -> ValidationError:
        return cls([ParameterIssue(parameter=parameter, code=code, message=message)])


class InvalidRefIdError(GraphpipeError):
    """Raised when a node refId is not a single uppercase letter."""

    code = "InvalidRefId"

    def __init__(self, ref_id: Any) -> None:
        self.ref_id = ref_id
        super().__init__(
            f"Invalid refId {ref_id!r}: must be a single uppercase letter A-Z",
            details={"refId": ref_id},
        )


class InvalidNodeError(GraphpipeError):
    """Raised when a query node definition is malformed."""

    code = "InvalidNode"

    def __init__(self, ref_id: Optional[str], message: str) -> None:
        self.ref_id = ref_id
        super().__init__(f"Invalid query node '{ref_id}': {message}", details={"refId": ref_id})


class CompilationError(GraphpipeError):
    """Raised when SQL text cannot be compiled for binding."""

    code = "CompilationError"

    def __init__(self, ref_id: str, message: str) -> None:
        self.ref_id = ref_id
        super().__init__(f"Failed to compile '{ref_id}': {message}", details={"refId": ref_id})


class UnsafeQueryError(GraphpipeError):
    """Raised when a statement is not a single read-only query."""

    code = "UnsafeQuery"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TimeRangeError(GraphpipeError):
    """Raised when a time range selector cannot be resolved."""

    code = "TimeRangeError"

    def __init__(self, message: str, value: Any = None) -> None:
        self.value = value
        details = {"value": value} if value is not None else None
        super().__init__(message, details=details)


# ─────────────────────────────────────────────────
# Request shape (DAG)
# ─────────────────────────────────────────────────


class CyclicDependencyError(GraphpipeError):
    """Raised when node dependencies form a cycle."""

    code = "CyclicDependency"

    def __init__(self, cycle: List[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic dependency detected: {' -> '.join(self.cycle)}",
            details={"refIds": self.cycle},
        )


class UnknownReferenceError(GraphpipeError):
    """Raised when an expression references a refId absent from the request."""

    code = "UnknownReference"

    def __init__(self, ref_id: str, missing: str) -> None:
        self.ref_id = ref_id
        self.missing = missing
        super().__init__(
            f"Node '{ref_id}' references unknown refId '{missing}'",
            details={"refId": ref_id, "reference": missing},
        )


class DuplicateRefIdError(GraphpipeError):
    """Raised when two nodes share a refId."""

    code = "DuplicateRefId"

    def __init__(self, ref_id: str) -> None:
        self.ref_id = ref_id
        super().__init__(f"Duplicate refId '{ref_id}'", details={"refId": ref_id})


# ─────────────────────────────────────────────────
# Infrastructure
# ─────────────────────────────────────────────────


class InfrastructureError(GraphpipeError):
    """Base for secret, connection and pool failures."""

    public_message = "The data source is currently unavailable"


class SecretNotFoundError(InfrastructureError):
    """Raised when a data source has no resolvable secret."""

    code = "SecretNotFound"
    public_message = "Credentials for the data source could not be found"

    def __init__(self, data_source_ref: str, workspace_id: str) -> None:
        self.data_source_ref = data_source_ref
        self.workspace_id = workspace_id
        super().__init__(
            f"Secret for data source '{data_source_ref}' not found in workspace '{workspace_id}'",
            details={"dataSourceRef": data_source_ref},
        )


class ConnectionFailedError(InfrastructureError):
    """Raised when a connection cannot be opened.

    The message must already be redacted of credentials.
    """

    code = "ConnectionFailed"
    public_message = "Could not connect to the data source"

    def __init__(self, data_source_ref: Optional[str], message: str) -> None:
        self.data_source_ref = data_source_ref
        self.reason = message
        details = {"dataSourceRef": data_source_ref} if data_source_ref else None
        super().__init__(f"Connection failed: {message}", details=details)


class PoolExhaustedError(InfrastructureError):
    """Raised when a pool checkout times out."""

    code = "PoolExhausted"
    public_message = "The data source is busy, try again later"

    def __init__(self, data_source_ref: Optional[str], timeout: float) -> None:
        self.data_source_ref = data_source_ref
        self.timeout = timeout
        details = {"dataSourceRef": data_source_ref} if data_source_ref else None
        super().__init__(
            f"Connection pool exhausted for '{data_source_ref}' after {timeout}s",
            details=details,
        )


# ─────────────────────────────────────────────────
# Target database
# ─────────────────────────────────────────────────


class QueryTimeoutError(GraphpipeError):
    """Raised when a statement exceeds its deadline."""

    code = "QueryTimeout"

    def __init__(self, ref_id: Optional[str], timeout: float) -> None:
        self.ref_id = ref_id
        self.timeout = timeout
        super().__init__(
            f"Query '{ref_id}' exceeded the {timeout:g}s deadline and was cancelled",
            details={"refId": ref_id},
        )


class QueryExecutionError(GraphpipeError):
    """Raised when the target database rejects a statement."""

    code = "QueryExecutionError"

    def __init__(self, ref_id: Optional[str], message: str) -> None:
        self.ref_id = ref_id
        details = {"refId": ref_id} if ref_id else None
        super().__init__(message, details=details)


class RequestCancelledError(GraphpipeError):
    """Raised when the caller cancels an in-flight request."""

    code = "RequestCancelled"

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(f"Request cancelled: {reason}")


# ─────────────────────────────────────────────────
# Derived nodes
# ─────────────────────────────────────────────────


class InvalidExpressionError(GraphpipeError):
    """Raised when a derived expression cannot be parsed or evaluated."""

    code = "InvalidExpression"

    def __init__(self, expression: str, message: str, ref_id: Optional[str] = None) -> None:
        self.expression = expression
        self.ref_id = ref_id
        details: Dict[str, Any] = {"expression": expression}
        if ref_id:
            details["refId"] = ref_id
        super().__init__(f"Invalid expression {expression!r}: {message}", details=details)


class UpstreamMissingError(GraphpipeError):
    """Raised when a derived node runs before one of its inputs."""

    code = "UpstreamMissing"

    def __init__(self, ref_id: str, missing: str) -> None:
        self.ref_id = ref_id
        self.missing = missing
        super().__init__(
            f"Node '{ref_id}' has no computed result for upstream '{missing}'",
            details={"refId": ref_id, "reference": missing},
        )
