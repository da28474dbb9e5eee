"""
Exceptions raised by the ledger core.

Every domain failure derives from LedgerError so callers (the UI, the
scheduler tick) can catch the expected ones and let infrastructure
failures such as StorageError propagate.
"""

from decimal import Decimal
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finledger.models.common import ValidationIssue


ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Input is malformed or not permitted (bad payload, missing reason, ...)."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []

    @classmethod
    def from_pydantic(cls, error: Any, context: str) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping one issue per field error."""
        issues = []
        for item in error.errors():
            field = ".".join(str(part) for part in item.get("loc", ())) or "payload"
            issues.append(ValidationIssue(
                field=field,
                issue_type=item.get("type", "invalid_value"),
                message=item.get("msg", "Invalid value"),
            ))
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues)
        return cls(f"Invalid {context}: {summary}", issues)


class NotFoundError(LedgerError):
    """Referenced entity does not exist or belongs to another user."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InsufficientFundsError(LedgerError):
    """A debit would take an account balance below zero."""

    def __init__(self, account_id: Any, balance: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient balance in account {account_id}: "
            f"balance {balance}, requested {requested}"
        )
        self.account_id = account_id
        self.balance = balance
        self.requested = requested


class ConfigurationError(LedgerError):
    """A stored definition is missing something it needs to run."""
    pass


class DuplicateError(LedgerError):
    """An entity with the same identity already exists."""
    pass


class ConvergenceNotReached(UserWarning):
    """XIRR iteration stopped without meeting its tolerance."""
    pass


def parse_payload(model: Type[ModelT], data: Union[ModelT, dict], context: str) -> ModelT:
    """Build a pydantic payload, turning its errors into a ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, context) from e
