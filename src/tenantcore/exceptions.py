"""Unified exception hierarchy for tenantcore.

Every error raised by the access evaluator and the propagation engine
inherits from TenantCoreError. This module provides:
- Base exception hierarchy with stable error codes
- Rejection errors raised before any propagation state changes
- Run-level errors (partial/total failure, rollback, state machine)
- ErrorRegistry for protocol mapping
- gRPC error handler decorator for services exposing the core over gRPC

Usage in route handlers:
    from tenantcore.exceptions import AuthorizationError, RejectionError

    try:
        plan = await engine.plan(scope, actor)
    except RejectionError as e:
        return json_response(e.to_payload(), status=403 if e.kind == "unauthorized" else 400)
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "TenantCoreError",
    "ConfigurationError",
    "RejectionError",
    "AuthorizationError",
    "ValidationError",
    "MissingConfirmationError",
    "ConflictError",
    "StorageError",
    "TargetLockTimeoutError",
    "PartialFailureError",
    "TotalFailureError",
    "RollbackUnavailableError",
    "RunNotFoundError",
    "RunStateError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # gRPC helpers
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class TenantCoreError(Exception):
    """Base exception for tenantcore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "AUTHORIZATION_ERROR").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """JSON-serialisable error body for HTTP layers."""
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = {k: _jsonable(v) for k, v in self.details.items()}
        return payload


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


class ConfigurationError(TenantCoreError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class RejectionError(TenantCoreError):
    """A propagation request rejected before any processing.

    ``kind`` is one of ``unauthorized``, ``invalid_scope`` or
    ``missing_confirmation``. Rejections never leave partial state.
    """

    code: str = "REJECTION_ERROR"
    kind: str = "invalid_scope"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, code, **kwargs)
        self.details.setdefault("kind", self.kind)


class AuthorizationError(RejectionError):
    """The actor lacks the tier, role or scope authority for an operation.

    Always carries the specific missing requirement so callers can build
    an upgrade or permission prompt.
    """

    code: str = "AUTHORIZATION_ERROR"
    kind: str = "unauthorized"
    message: str = "Access denied"

    def __init__(self, message: str | None = None, decision: Any = None, **kwargs: Any) -> None:
        self.decision = decision
        if decision is not None:
            message = message or decision.reason
            kwargs.setdefault("feature_id", decision.feature_id)
            kwargs.setdefault("reason", decision.reason)
            if decision.required_tier:
                kwargs.setdefault("required_tier", decision.required_tier)
            if decision.required_role:
                kwargs.setdefault("required_role", decision.required_role)
        super().__init__(message, **kwargs)

    @property
    def required_tier(self) -> str | None:
        return self.details.get("required_tier")

    @property
    def required_role(self) -> str | None:
        return self.details.get("required_role")


class ValidationError(RejectionError):
    """Malformed or unsafe scope descriptor."""

    code: str = "VALIDATION_ERROR"
    kind: str = "invalid_scope"
    message: str = "Invalid propagation scope"


class MissingConfirmationError(ValidationError):
    """Platform-wide scope without ``confirm_platform_wide = True``."""

    code: str = "MISSING_CONFIRMATION"
    kind: str = "missing_confirmation"
    message: str = "Platform-wide propagation requires confirm_platform_wide=true"


class ConflictError(TenantCoreError):
    """A target item already exists under ``skip_on_conflict``.

    Built for every conflicting item of a strict run and recorded in the
    summary as a ``ConflictRecord``; never raised out of a run.
    """

    code: str = "CONFLICT_ERROR"
    message: str = "Target record already exists"


class StorageError(TenantCoreError):
    """A collaborator store failed to read or write."""

    code: str = "STORAGE_ERROR"


class TargetLockTimeoutError(TenantCoreError):
    """A target tenant's category lock could not be acquired in time."""

    code: str = "TARGET_LOCK_TIMEOUT"
    message: str = "Timed out waiting for target lock"


class _RunError(TenantCoreError):
    """Errors that describe the outcome of a whole run."""

    def __init__(self, message: str | None = None, run: Any = None, **kwargs: Any) -> None:
        self.run = run
        if run is not None:
            kwargs.setdefault("run_id", run.id)
            kwargs.setdefault("failed_targets", [e.tenant_id for e in run.target_errors])
        super().__init__(message, **kwargs)


class PartialFailureError(_RunError):
    """At least one target failed while at least one succeeded."""

    code: str = "PARTIAL_FAILURE"
    message: str = "Propagation completed with failed targets"


class TotalFailureError(_RunError):
    """No target succeeded."""

    code: str = "TOTAL_FAILURE"
    message: str = "Propagation failed for every target"


class RollbackUnavailableError(TenantCoreError):
    """Rollback requested for a run that cannot be rolled back."""

    code: str = "ROLLBACK_UNAVAILABLE"
    message: str = "Rollback is not available for this run"


class RunNotFoundError(TenantCoreError):
    """No propagation run with the given id."""

    code: str = "RUN_NOT_FOUND"
    message: str = "Propagation run not found"


class RunStateError(TenantCoreError):
    """Illegal propagation run state transition."""

    code: str = "RUN_STATE_ERROR"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[TenantCoreError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[TenantCoreError]] = {}

    def register(self, code: str, error_cls: type[TenantCoreError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[TenantCoreError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[TenantCoreError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("BILLING_ERROR")
        class BillingError(TenantCoreError):
            code = "BILLING_ERROR"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


for _cls in (
    TenantCoreError,
    ConfigurationError,
    RejectionError,
    AuthorizationError,
    ValidationError,
    MissingConfirmationError,
    ConflictError,
    StorageError,
    TargetLockTimeoutError,
    PartialFailureError,
    TotalFailureError,
    RollbackUnavailableError,
    RunNotFoundError,
    RunStateError,
):
    error_registry.register(_cls.code, _cls)
del _cls


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: TenantCoreError) -> Any:
    """Map TenantCoreError to gRPC status code.

    Returns grpc.StatusCode value for the given error type.
    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "REJECTION_ERROR": grpc.StatusCode.INVALID_ARGUMENT,
        "AUTHORIZATION_ERROR": grpc.StatusCode.PERMISSION_DENIED,
        "VALIDATION_ERROR": grpc.StatusCode.INVALID_ARGUMENT,
        "MISSING_CONFIRMATION": grpc.StatusCode.FAILED_PRECONDITION,
        "CONFLICT_ERROR": grpc.StatusCode.ALREADY_EXISTS,
        "STORAGE_ERROR": grpc.StatusCode.UNAVAILABLE,
        "TARGET_LOCK_TIMEOUT": grpc.StatusCode.DEADLINE_EXCEEDED,
        "PARTIAL_FAILURE": grpc.StatusCode.ABORTED,
        "TOTAL_FAILURE": grpc.StatusCode.ABORTED,
        "ROLLBACK_UNAVAILABLE": grpc.StatusCode.FAILED_PRECONDITION,
        "RUN_NOT_FOUND": grpc.StatusCode.NOT_FOUND,
        "RUN_STATE_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods with proper error handling.

    Catches TenantCoreError and sets appropriate gRPC status codes.
    Logs errors and ensures consistent error response format.

    Usage:
        @grpc_error_handler
        async def PlanPropagation(self, request, context):
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except TenantCoreError as e:
            status_code = get_grpc_status_code(e)
            error_message = f"[{e.code}] {e.message}"

            logger.error(
                "%s failed: %s",
                method.__name__,
                error_message,
                extra={
                    "error_code": e.code,
                    "error_details": e.details,
                },
            )

            context.set_trailing_metadata([("error-code", e.code)])
            await context.abort(status_code, error_message)
            return

        except Exception as e:
            import grpc

            logger.exception("%s unexpected error: %s", method.__name__, e)
            await context.abort(
                grpc.StatusCode.INTERNAL,
                f"Unexpected {type(e)}: {e}",
            )
            return

    return wrapper
