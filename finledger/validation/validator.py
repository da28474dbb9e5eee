"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - STRUCTURAL VALIDATION:
- The entry type carries exactly the account references it needs
- A transfer does not move money from an account to itself
- Currency conversion only appears on transfers
- Runs without storage

STAGE 2 - REFERENCE VALIDATION:
- Referenced accounts exist and belong to the user
- Referenced accounts are not soft-deleted
- The debited account is not locked
- Needs the account store

Stage 2 is skipped when stage 1 fails. Field-level checks (positive amounts,
lengths) already happened when the pydantic payload was built.

IMPORTANT: Validation never fixes anything. It reports issues and the
caller decides which exception they become.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog

from finledger.errors import ConfigurationError, NotFoundError, ValidationError
from finledger.models.account import Account
from finledger.models.common import ValidationIssue, utcnow
from finledger.models.recurring import RecurringTransaction
from finledger.models.transaction import (
    FORBIDDEN_ACCOUNTS,
    REQUIRED_ACCOUNTS,
    TransactionPayload,
    TransactionType,
)
from finledger.services.storage.interface import AccountStorageInterface


logger = structlog.get_logger(__name__)

# Entry dates further ahead than this get a warning
FUTURE_DATE_TOLERANCE = timedelta(days=1)


class TransactionValidator:
    """
    Validates ledger entries (and recurring templates) before they touch money.
    """

    def __init__(self, accounts: AccountStorageInterface):
        self._accounts = accounts

    def _validate_structure(
        self,
        transaction_type: TransactionType,
        from_account: Optional[UUID],
        to_account: Optional[UUID],
        has_conversion: bool = False,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: structural validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        refs = {"from_account": from_account, "to_account": to_account}

        for field in REQUIRED_ACCOUNTS[transaction_type]:
            if refs[field] is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing",
                    message=f"{field} is required for {transaction_type.value} transactions",
                    suggested_fix=f"Choose the account to use as {field}",
                ))

        for field in FORBIDDEN_ACCOUNTS[transaction_type]:
            if refs[field] is not None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_allowed",
                    message=f"{transaction_type.value} transactions do not take a {field}",
                ))

        if (
            transaction_type == TransactionType.TRANSFER
            and from_account is not None
            and from_account == to_account
        ):
            issues.append(ValidationIssue(
                field="to_account",
                issue_type="invalid_value",
                message="Cannot transfer to the same account",
                suggested_fix="Pick a different destination account",
            ))

        if has_conversion and transaction_type != TransactionType.TRANSFER:
            issues.append(ValidationIssue(
                field="conversion_rate",
                issue_type="not_allowed",
                message="Currency conversion only applies to transfers",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _validate_references(
        self,
        user_id: UUID,
        transaction_type: TransactionType,
        from_account: Optional[UUID],
        to_account: Optional[UUID],
    ) -> tuple[dict[UUID, Account], list[ValidationIssue]]:
        """
        Stage 2: reference validation.

        Raises:
            NotFoundError: If an account is missing or owned by someone else
        """
        issues = []
        resolved: dict[UUID, Account] = {}

        for field, account_id in (("from_account", from_account), ("to_account", to_account)):
            if account_id is None:
                continue
            account = await self._accounts.get_account(account_id)
            if account is None or account.user_id != user_id:
                raise NotFoundError("Account", account_id)
            resolved[account_id] = account

            if account.is_deleted:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_allowed",
                    message=f"Account '{account.account_name}' has been deleted",
                    suggested_fix="Restore the account first",
                ))
            elif field == "from_account" and account.is_locked:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_allowed",
                    message=f"Account '{account.account_name}' is locked",
                    suggested_fix="Unlock the account to spend from it",
                ))

        return resolved, issues

    def _check_dates(
        self,
        transaction_date: Optional[datetime],
        now: datetime,
    ) -> list[ValidationIssue]:
        if transaction_date and transaction_date > now + FUTURE_DATE_TOLERANCE:
            return [ValidationIssue(
                field="transaction_date",
                issue_type="future_date",
                message=f"Transaction date ({transaction_date.date()}) is in the future",
                severity="warning",
            )]
        return []

    async def validate_payload(
        self,
        user_id: UUID,
        payload: TransactionPayload,
        now: Optional[datetime] = None,
    ) -> dict[UUID, Account]:
        """
        Run both stages for a new ledger entry.

        Returns:
            The referenced accounts by ID

        Raises:
            ValidationError: Structural or reference problems
            NotFoundError: Unknown account
        """
        valid, issues = self._validate_structure(
            payload.type,
            payload.from_account,
            payload.to_account,
            has_conversion=payload.has_conversion,
        )
        if not valid:
            raise ValidationError(self.summarize(issues), issues)

        accounts, reference_issues = await self._validate_references(
            user_id, payload.type, payload.from_account, payload.to_account
        )
        if reference_issues:
            raise ValidationError(self.summarize(reference_issues), reference_issues)

        warnings = self._check_dates(payload.transaction_date, now or utcnow())
        for warning in warnings:
            logger.warning("transaction_validation_warning", field=warning.field, message=warning.message)

        return accounts

    async def validate_definition(
        self,
        definition: RecurringTransaction,
    ) -> dict[UUID, Account]:
        """
        Check a recurring template right before it is materialized.

        Raises:
            ConfigurationError: The template lacks an account its type needs
            ValidationError: The accounts it names cannot be used right now
            NotFoundError: An account it names is gone
        """
        valid, issues = self._validate_structure(
            definition.type, definition.from_account, definition.to_account
        )
        if not valid:
            raise ConfigurationError(
                f"Recurring transaction '{definition.name}' is misconfigured: "
                f"{self.summarize(issues)}"
            )

        accounts, reference_issues = await self._validate_references(
            definition.user_id, definition.type, definition.from_account, definition.to_account
        )
        if reference_issues:
            raise ValidationError(self.summarize(reference_issues), reference_issues)
        return accounts

    @staticmethod
    def summarize(issues: list[ValidationIssue]) -> str:
        """One-line summary of the error issues."""
        errors = [i.message for i in issues if i.severity == "error"]
        return "; ".join(errors) or "Validation failed"

    @staticmethod
    def get_user_friendly_summary(issues: list[ValidationIssue]) -> str:
        """
        Multi-line summary for the UI.
        """
        if not issues:
            return "✅ All checks passed!"

        lines = ["❌ Please fix the following:"]
        for issue in issues:
            marker = "•" if issue.severity == "error" else "⚠️"
            lines.append(f"   {marker} {issue.message}")
            if issue.suggested_fix:
                lines.append(f"     💡 {issue.suggested_fix}")
        return "\n".join(lines)
