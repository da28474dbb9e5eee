"""
Account and Budget Services

Metadata management for accounts and budgets. Neither service moves money:
balances and current_spent only change through the ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.errors import NotFoundError, ValidationError, parse_payload
from finledger.ledger.locks import KeyedLocks, account_key
from finledger.models.account import (
    ACCOUNT_UPDATABLE_FIELDS,
    Account,
    AccountPayload,
    Currency,
    is_known_account_type,
)
from finledger.models.audit import AuditEventType
from finledger.models.budget import BUDGET_UPDATABLE_FIELDS, Budget, BudgetPayload
from finledger.models.common import ZERO, ValidationIssue, utcnow
from finledger.services.storage.interface import (
    AccountStorageInterface,
    BudgetStorageInterface,
)


logger = structlog.get_logger(__name__)


def _reject_fields(fields: list[str], allowed: frozenset, entity: str) -> None:
    forbidden = sorted(set(fields) - allowed)
    if not forbidden:
        return
    issues = [
        ValidationIssue(
            field=f,
            issue_type="not_allowed",
            message=(
                "Balance only changes through transactions"
                if f in ("balance", "current_spent")
                else f"{f} cannot be changed on a {entity}"
            ),
        )
        for f in forbidden
    ]
    raise ValidationError("; ".join(i.message for i in issues), issues)


class AccountService:
    """
    Opens, edits, soft-deletes and restores accounts.
    """

    def __init__(
        self,
        accounts: AccountStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._accounts = accounts
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def create_account(
        self,
        user_id: UUID,
        payload: Union[AccountPayload, dict],
    ) -> Account:
        """Open an account with an optional opening balance."""
        payload = parse_payload(AccountPayload, payload, "account")

        if not is_known_account_type(payload.account_type):
            logger.warning("custom_account_type", account_type=payload.account_type)

        account = Account(
            user_id=user_id,
            account_name=payload.account_name,
            account_type=payload.account_type,
            balance=payload.balance,
            description=payload.description,
            currency=payload.currency or Currency.default(),
            color=payload.color,
            icon=payload.icon,
            created_at=self._clock(),
        )
        account = await self._accounts.save_account(account)

        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_CREATED,
            "account",
            account.id,
            user_id,
            f"Account opened: {account.account_name}",
            details={"account_type": account.account_type, "opening_balance": str(account.balance)},
        )
        return account

    async def get_account(self, user_id: UUID, account_id: UUID) -> Account:
        account = await self._accounts.get_account(account_id)
        if account is None or account.user_id != user_id:
            raise NotFoundError("Account", account_id)
        return account

    async def list_accounts(self, user_id: UUID, include_deleted: bool = False) -> list[Account]:
        return await self._accounts.list_accounts(user_id, include_deleted=include_deleted)

    async def total_balance(self, user_id: UUID) -> Decimal:
        """Sum of the balances of all non-deleted accounts."""
        accounts = await self._accounts.list_accounts(user_id)
        return sum((a.balance for a in accounts), ZERO)

    async def update_account(
        self,
        user_id: UUID,
        account_id: UUID,
        changes: dict[str, Any],
    ) -> Account:
        """Edit account metadata (name, type, status, appearance, currency)."""
        _reject_fields(list(changes), ACCOUNT_UPDATABLE_FIELDS, "account")

        async with self._locks.hold(account_key(account_id)):
            current = await self.get_account(user_id, account_id)
            data = current.model_dump()
            data.update(changes)
            updated = parse_payload(Account, data, "account")
            updated = await self._accounts.save_account(updated)

        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_UPDATED,
            "account",
            account_id,
            user_id,
            f"Account updated: {updated.account_name}",
            details={"changed_fields": sorted(changes)},
        )
        return updated

    async def soft_delete_account(self, user_id: UUID, account_id: UUID) -> Account:
        """
        Hide an account. Only an empty account can be deleted.

        Raises:
            ValidationError: The account still holds money or is already deleted
        """
        async with self._locks.hold(account_key(account_id)):
            account = await self.get_account(user_id, account_id)
            if account.is_deleted:
                raise ValidationError(f"Account '{account.account_name}' is already deleted")
            if account.balance > 0:
                raise ValidationError(
                    f"Cannot delete '{account.account_name}' with a balance of {account.balance}. "
                    "Transfer the money out first."
                )
            deleted = account.model_copy(update={"is_deleted": True, "deleted_at": self._clock()})
            deleted = await self._accounts.save_account(deleted)

        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_DELETED,
            "account",
            account_id,
            user_id,
            f"Account deleted: {account.account_name}",
        )
        return deleted

    async def restore_account(self, user_id: UUID, account_id: UUID) -> Account:
        async with self._locks.hold(account_key(account_id)):
            account = await self.get_account(user_id, account_id)
            if not account.is_deleted:
                raise ValidationError(f"Account '{account.account_name}' is not deleted")
            restored = account.model_copy(update={"is_deleted": False, "deleted_at": None})
            restored = await self._accounts.save_account(restored)

        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_RESTORED,
            "account",
            account_id,
            user_id,
            f"Account restored: {account.account_name}",
        )
        return restored


class BudgetService:
    """
    Creates and edits monthly category budgets.
    """

    def __init__(
        self,
        budgets: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._budgets = budgets
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._settings = get_settings().ledger

    async def create_budget(
        self,
        user_id: UUID,
        payload: Union[BudgetPayload, dict],
    ) -> Budget:
        """
        Create a budget for a category; month and year default to now.

        Raises:
            DuplicateError: A budget already covers that category and month
        """
        payload = parse_payload(BudgetPayload, payload, "budget")
        now = self._clock()

        budget = Budget(
            user_id=user_id,
            category=payload.category,
            monthly_limit=payload.monthly_limit,
            month=payload.month or now.month,
            year=payload.year or now.year,
            alert_threshold=(
                payload.alert_threshold
                if payload.alert_threshold is not None
                else self._settings.budget_alert_threshold
            ),
            created_at=now,
        )
        budget = await self._budgets.save_budget(budget)

        await self._audit.log_entity_changed(
            AuditEventType.BUDGET_CREATED,
            "budget",
            budget.id,
            user_id,
            f"Budget set for {budget.category}: {budget.monthly_limit} in {budget.month}/{budget.year}",
        )
        return budget

    async def get_budget(self, user_id: UUID, budget_id: UUID) -> Budget:
        budget = await self._budgets.get_budget(budget_id)
        if budget is None or budget.user_id != user_id:
            raise NotFoundError("Budget", budget_id)
        return budget

    async def list_budgets(
        self,
        user_id: UUID,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        return await self._budgets.list_budgets(user_id, month=month, year=year)

    async def update_budget(
        self,
        user_id: UUID,
        budget_id: UUID,
        changes: dict[str, Any],
    ) -> Budget:
        """Change a budget's limit or alert threshold."""
        _reject_fields(list(changes), BUDGET_UPDATABLE_FIELDS, "budget")

        current = await self.get_budget(user_id, budget_id)
        data = current.model_dump()
        data.update(changes)
        updated = parse_payload(Budget, data, "budget")
        updated = await self._budgets.save_budget(updated)

        await self._audit.log_entity_changed(
            AuditEventType.BUDGET_UPDATED,
            "budget",
            budget_id,
            user_id,
            f"Budget updated for {updated.category}",
            details={"changed_fields": sorted(changes)},
        )
        return updated

    async def delete_budget(self, user_id: UUID, budget_id: UUID) -> None:
        """Remove a budget. The expenses it tracked stay in the ledger."""
        budget = await self.get_budget(user_id, budget_id)
        await self._budgets.delete_budget(budget_id)

        await self._audit.log_entity_changed(
            AuditEventType.BUDGET_DELETED,
            "budget",
            budget_id,
            user_id,
            f"Budget removed for {budget.category} in {budget.month}/{budget.year}",
        )
