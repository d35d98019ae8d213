"""
Error types for replicord.

This module defines every exception the library raises:
- ReplicordError: Base exception
- SetupError / MissingConditionError: Fatal model configuration problems
- CallbackRequiredError: A callback argument was expected but is not callable
- SchemaError / UnknownFieldError / FieldValidationError: Schema violations
- UnknownModelError / ReadOnlyModelError: Model lookup and role errors
- StorageError / StoreNotConnectedError: Storage adapter failures
- ProtocolError: Malformed replication frames
- RequestTimeoutError: A pull request expired before its response arrived

Invariants:
    - All errors inherit from ReplicordError
    - Setup errors are raised before any write is enqueued
    - Errors carry a stable code and a details mapping for context
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ReplicordError(Exception):
    """Base exception for all replicord errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REPLICORD_ERROR"
        self.details = details or {}


class SetupError(ReplicordError):
    """Model setup failed.

    Raised when:
    - The configurator is not callable
    - The replication policy is inconsistent
    """

    def __init__(self, message: str, model_name: Optional[str] = None) -> None:
        super().__init__(message, code="SETUP_ERROR", details={"model": model_name})
        self.model_name = model_name


class MissingConditionError(SetupError):
    """Replication is enabled but no condition predicate was supplied."""

    def __init__(self, model_name: str) -> None:
        super().__init__(
            f"Replicated model '{model_name}' needs a condition predicate",
            model_name=model_name,
        )
        self.code = "MISSING_CONDITION"


class CallbackRequiredError(ReplicordError, TypeError):
    """A callback argument was expected but the value is not callable."""

    def __init__(self, value: Any, purpose: str = "callback") -> None:
        super().__init__(
            f"Expected a callable {purpose}, got {type(value).__name__}",
            code="CALLBACK_REQUIRED",
            details={"purpose": purpose, "type": type(value).__name__},
        )


class SchemaError(ReplicordError):
    """Schema declaration is invalid."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message, code="SCHEMA_ERROR", details={"field": field_name})
        self.field_name = field_name


class UnknownFieldError(ReplicordError, AttributeError):
    """A field name is not declared by the model's schema.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        model_name: The model being accessed
        suggestions: Similar declared field names
    """

    def __init__(
        self,
        field_name: str,
        model_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' on model '{model_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "model_name": model_name,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.model_name = model_name
        self.suggestions = suggestions


class FieldValidationError(ReplicordError, TypeError):
    """A value does not match its field kind."""

    def __init__(self, field_name: str, kind: str, value: Any) -> None:
        super().__init__(
            f"Field '{field_name}' expects {kind}, got {type(value).__name__}",
            code="VALIDATION_ERROR",
            details={"field": field_name, "kind": kind, "type": type(value).__name__},
        )
        self.field_name = field_name
        self.kind = kind


class UnknownModelError(ReplicordError, KeyError):
    """No model is registered under the requested name."""

    def __init__(self, model_name: str) -> None:
        super().__init__(
            f"No model registered as '{model_name}'",
            code="UNKNOWN_MODEL",
            details={"model": model_name},
        )
        self.model_name = model_name

    def __str__(self) -> str:
        return self.message


class ReadOnlyModelError(ReplicordError):
    """Write attempted on a client-side replicated model."""

    def __init__(self, model_name: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} objects of replicated model '{model_name}' on a client",
            code="READ_ONLY_MODEL",
            details={"model": model_name, "operation": operation},
        )
        self.model_name = model_name
        self.operation = operation


class StorageError(ReplicordError):
    """Storage adapter operation failed."""

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, code="STORAGE_ERROR", details={"table": table})
        self.table = table


class StoreNotConnectedError(StorageError):
    """Storage adapter is not connected."""

    def __init__(self, message: str = "Storage adapter is not connected") -> None:
        super().__init__(message)
        self.code = "STORE_NOT_CONNECTED"


class ProtocolError(ReplicordError):
    """A replication frame could not be encoded or decoded."""

    def __init__(self, message: str, message_type: Optional[int] = None) -> None:
        super().__init__(message, code="PROTOCOL_ERROR", details={"message_type": message_type})
        self.message_type = message_type


class RequestTimeoutError(ReplicordError):
    """A pull request expired before a matching response arrived."""

    def __init__(self, request_id: str, timeout: float) -> None:
        super().__init__(
            f"Request {request_id} timed out after {timeout}s",
            code="REQUEST_TIMEOUT",
            details={"request_id": request_id, "timeout": timeout},
        )
        self.request_id = request_id
        self.timeout = timeout
