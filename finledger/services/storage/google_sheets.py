"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a persistent backend because:
1. Non-technical users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No conditional writes: increment_balance is read-modify-write, so the
  ledger's per-account locks are what keep it consistent. Only one process
  may write to a spreadsheet.
- Limited query capabilities (we filter in Python)

The ledger and its amendment logs use one column per field so the sheet
reads like a bank statement. Accounts, budgets, goals, recurring definitions
and investments are stored as JSON documents (one row per record) since they
are rewritten in place.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from finledger.config import get_settings
from finledger.errors import (
    DuplicateError,
    InsufficientFundsError,
    LedgerError,
    NotFoundError,
)
from finledger.models.account import Account
from finledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finledger.models.budget import Budget
from finledger.models.common import utcnow
from finledger.models.goal import Goal, GoalStatus
from finledger.models.investment import Investment, InvestmentStatus, InvestmentType
from finledger.models.recurring import Frequency, RecurringTransaction
from finledger.models.transaction import Transaction, TransactionLog, TransactionType
from finledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    InvestmentStorageInterface,
    RecurringStorageInterface,
    StorageConnectionError,
    StorageError,
    TransactionLogStorageInterface,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Column mappings for the Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "type",
    "from_account",
    "to_account",
    "amount",
    "category",
    "payment_mode",
    "note",
    "conversion_rate",
    "converted_amount",
    "from_currency",
    "to_currency",
    "transaction_date",
    "tags_json",
    "was_edited",
    "created_at",
]

# Column mappings for the TransactionLogs sheet
TRANSACTION_LOG_COLUMNS = [
    "id",
    "transaction_id",
    "user_id",
    "modified_at",
    "reason",
    "old_data_json",
    "new_data_json",
]

# Column mappings for the Audit sheet (see AuditEvent.to_sheets_row)
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]

# Keyed records rewritten in place
DOCUMENT_COLUMNS = ["id", "user_id", "updated_at", "payload_json"]


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet


class _SheetStore:
    """Shared plumbing: one worksheet, header in row 1."""

    columns: list[str] = []

    def __init__(self, client: Optional[GoogleSheetsClient], sheet_name: str):
        self._client = client or GoogleSheetsClient()
        self._sheet_name = sheet_name

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_sheet(self._sheet_name, self.columns)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _fetch_rows(self) -> list[tuple[int, list[str]]]:
        """(sheet row number, values) for every non-empty data row."""
        all_rows = self._sheet().get_all_values()
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)  # row 1 is the header
            if row and row[0]
        ]

    def _rows(self) -> list[tuple[int, list[str]]]:
        try:
            return self._fetch_rows()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read sheet {self._sheet_name}: {e}")

    def _append(self, row: list) -> None:
        try:
            self._sheet().append_row(row, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to append to sheet {self._sheet_name}: {e}")

    def _overwrite(self, row_number: int, row: list) -> None:
        try:
            self._sheet().update(
                range_name=f"A{row_number}",
                values=[row],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to update sheet {self._sheet_name}: {e}")

    def _remove(self, row_number: int) -> None:
        try:
            self._sheet().delete_rows(row_number)
        except Exception as e:
            raise StorageError(f"Failed to delete from sheet {self._sheet_name}: {e}")


class _DocumentStore(_SheetStore, Generic[ModelT]):
    """Records of one model serialized as JSON, one row each."""

    columns = DOCUMENT_COLUMNS
    model: Type[ModelT]

    def _load(self) -> list[tuple[int, ModelT]]:
        records = []
        for idx, row in self._rows():
            try:
                records.append((idx, self.model.model_validate_json(row[3])))
            except (IndexError, ValueError) as e:
                logger.warning("sheet_row_skipped", sheet=self._sheet_name, row=idx, error=str(e))
        return records

    def _find(self, record_id: UUID) -> tuple[Optional[int], Optional[ModelT]]:
        for idx, row in self._rows():
            if row[0] == str(record_id):
                return idx, self.model.model_validate_json(row[3])
        return None, None

    def _write(self, record: ModelT, row_number: Optional[int]) -> None:
        row = [
            str(record.id),
            str(record.user_id),
            utcnow().isoformat(),
            record.model_dump_json(),
        ]
        if row_number is None:
            self._append(row)
        else:
            self._overwrite(row_number, row)


class GoogleSheetsAccountStorage(_DocumentStore[Account], AccountStorageInterface):
    """
    Accounts as JSON documents.

    increment_balance is read-modify-write; callers must hold the account's
    ledger lock.
    """

    model = Account

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.accounts_sheet_name)

    async def save_account(self, account: Account) -> Account:
        idx, existing = self._find(account.id)
        if existing is not None:
            account = account.model_copy(update={"balance": existing.balance})
        self._write(account, idx)
        return account

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        return self._find(account_id)[1]

    async def list_accounts(self, user_id: UUID, include_deleted: bool = False) -> list[Account]:
        accounts = [
            a for _, a in self._load()
            if a.user_id == user_id and (include_deleted or not a.is_deleted)
        ]
        return sorted(accounts, key=lambda a: a.created_at)

    async def increment_balance(
        self,
        account_id: UUID,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0"),
    ) -> Account:
        idx, account = self._find(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)

        new_balance = account.balance + delta
        if minimum is not None and new_balance < minimum:
            raise InsufficientFundsError(account_id, account.balance, -delta)

        updated = account.model_copy(update={"balance": new_balance})
        self._write(updated, idx)
        return updated


class GoogleSheetsBudgetStorage(_DocumentStore[Budget], BudgetStorageInterface):
    """Budgets as JSON documents."""

    model = Budget

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.budgets_sheet_name)

    async def save_budget(self, budget: Budget) -> Budget:
        row_number = None
        for idx, other in self._load():
            if other.id == budget.id:
                row_number = idx
                budget = budget.model_copy(update={"current_spent": other.current_spent})
            elif (
                other.user_id == budget.user_id
                and other.category == budget.category
                and other.month == budget.month
                and other.year == budget.year
            ):
                raise DuplicateError(
                    f"Budget for {budget.category} {budget.month}/{budget.year} already exists"
                )
        self._write(budget, row_number)
        return budget

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        return self._find(budget_id)[1]

    async def find_budget(
        self,
        user_id: UUID,
        category: str,
        month: int,
        year: int,
    ) -> Optional[Budget]:
        for _, budget in self._load():
            if budget.user_id == user_id and budget.category == category \
                    and budget.month == month and budget.year == year:
                return budget
        return None

    async def list_budgets(
        self,
        user_id: UUID,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Budget]:
        budgets = [
            b for _, b in self._load()
            if b.user_id == user_id
            and (month is None or b.month == month)
            and (year is None or b.year == year)
        ]
        return sorted(budgets, key=lambda b: (b.year, b.month, b.category))

    async def increment_spent(self, budget_id: UUID, delta: Decimal) -> Budget:
        idx, budget = self._find(budget_id)
        if budget is None:
            raise NotFoundError("Budget", budget_id)
        updated = budget.model_copy(update={"current_spent": budget.current_spent + delta})
        self._write(updated, idx)
        return updated

    async def delete_budget(self, budget_id: UUID) -> bool:
        idx, _ = self._find(budget_id)
        if idx is None:
            raise NotFoundError("Budget", budget_id)
        self._remove(idx)
        return True


class GoogleSheetsGoalStorage(_DocumentStore[Goal], GoalStorageInterface):
    """Savings goals as JSON documents."""

    model = Goal

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.goals_sheet_name)

    async def save_goal(self, goal: Goal) -> bool:
        idx, _ = self._find(goal.id)
        self._write(goal, idx)
        return True

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        return self._find(goal_id)[1]

    async def delete_goal(self, goal_id: UUID) -> bool:
        idx, _ = self._find(goal_id)
        if idx is None:
            raise NotFoundError("Goal", goal_id)
        self._remove(idx)
        return True

    async def list_goals(
        self,
        user_id: UUID,
        status: Optional[GoalStatus] = None,
    ) -> list[Goal]:
        goals = [
            g for _, g in self._load()
            if g.user_id == user_id and (status is None or g.status == status)
        ]
        return sorted(goals, key=lambda g: g.deadline)


class GoogleSheetsRecurringStorage(_DocumentStore[RecurringTransaction], RecurringStorageInterface):
    """Recurring definitions as JSON documents."""

    model = RecurringTransaction

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.recurring_sheet_name)

    async def save_definition(self, definition: RecurringTransaction) -> bool:
        idx, _ = self._find(definition.id)
        self._write(definition, idx)
        return True

    async def get_definition(self, definition_id: UUID) -> Optional[RecurringTransaction]:
        return self._find(definition_id)[1]

    async def delete_definition(self, definition_id: UUID) -> bool:
        idx, _ = self._find(definition_id)
        if idx is None:
            raise NotFoundError("Recurring transaction", definition_id)
        self._remove(idx)
        return True

    async def list_definitions(
        self,
        user_id: UUID,
        is_active: Optional[bool] = None,
        frequency: Optional[Frequency] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[RecurringTransaction]:
        definitions = [
            d for _, d in self._load()
            if d.user_id == user_id
            and (is_active is None or d.is_active == is_active)
            and (frequency is None or d.frequency == frequency)
            and (transaction_type is None or d.type == transaction_type)
        ]
        return sorted(definitions, key=lambda d: d.next_run_date)

    async def list_due(self, now: datetime) -> list[RecurringTransaction]:
        due = [
            d for _, d in self._load()
            if d.is_active and not d.is_paused and d.next_run_date <= now
        ]
        return sorted(due, key=lambda d: d.next_run_date)


class GoogleSheetsInvestmentStorage(_DocumentStore[Investment], InvestmentStorageInterface):
    """Investments, with their transaction lists, as JSON documents."""

    model = Investment

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.investments_sheet_name)

    async def save_investment(self, investment: Investment) -> bool:
        idx, _ = self._find(investment.id)
        self._write(investment, idx)
        return True

    async def get_investment(self, investment_id: UUID) -> Optional[Investment]:
        return self._find(investment_id)[1]

    async def list_investments(
        self,
        user_id: UUID,
        status: Optional[InvestmentStatus] = None,
        investment_type: Optional[InvestmentType] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Investment]:
        investments = [
            i for _, i in self._load()
            if i.user_id == user_id
            and (status is None or i.status == status)
            and (investment_type is None or i.investment_type == investment_type)
            and (account_id is None or i.account_id == account_id)
        ]
        return sorted(investments, key=lambda i: i.purchase_date, reverse=True)

    async def delete_investment(self, investment_id: UUID) -> bool:
        idx, _ = self._find(investment_id)
        if idx is None:
            raise NotFoundError("Investment", investment_id)
        self._remove(idx)
        return True


class GoogleSheetsTransactionStorage(_SheetStore, TransactionStorageInterface):
    """
    The ledger, one entry per row.

    Rows are only ever appended, except for the in-place rewrite an
    amendment performs through replace_transaction.
    """

    columns = TRANSACTION_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.transactions_sheet_name)

    def _transaction_to_row(self, txn: Transaction) -> list:
        return [
            _cell(txn.id),
            _cell(txn.user_id),
            txn.type.value,
            _cell(txn.from_account),
            _cell(txn.to_account),
            str(txn.amount),
            txn.category,
            txn.payment_mode.value,
            txn.note or "",
            _cell(txn.conversion_rate),
            _cell(txn.converted_amount),
            txn.from_currency or "",
            txn.to_currency or "",
            txn.transaction_date.isoformat(),
            json.dumps([str(tag) for tag in txn.tags]),
            str(txn.was_edited),
            txn.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        # Missing trailing cells and blanks both mean "not set"
        data = {
            column: value
            for column, value in zip(TRANSACTION_COLUMNS, row)
            if value != ""
        }
        data["tags"] = json.loads(data.pop("tags_json", "[]"))
        data["was_edited"] = data.get("was_edited", "False").lower() == "true"
        return Transaction.model_validate(data)

    async def append_transaction(self, transaction: Transaction) -> bool:
        for _, row in self._rows():
            if row[0] == str(transaction.id):
                raise DuplicateError(f"Transaction {transaction.id} already recorded")
        self._append(self._transaction_to_row(transaction))
        return True

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        for _, row in self._rows():
            if row[0] == str(transaction_id):
                return self._row_to_transaction(row)
        return None

    async def replace_transaction(self, transaction: Transaction) -> bool:
        for idx, row in self._rows():
            if row[0] == str(transaction.id):
                self._overwrite(idx, self._transaction_to_row(transaction))
                return True
        raise NotFoundError("Transaction", transaction.id)

    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        account_id: Optional[UUID] = None,
        tag: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        note_contains: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        matches = []
        for idx, row in self._rows():
            if len(row) < 2 or row[1] != str(user_id):
                continue
            try:
                txn = self._row_to_transaction(row)
            except (ValueError, LedgerError) as e:
                logger.warning("sheet_row_skipped", sheet=self._sheet_name, row=idx, error=str(e))
                continue

            if transaction_type and txn.type != transaction_type:
                continue
            if category and txn.category != category:
                continue
            if account_id and not txn.touches_account(account_id):
                continue
            if tag and tag not in txn.tags:
                continue
            if date_from and txn.transaction_date < date_from:
                continue
            if date_to and txn.transaction_date > date_to:
                continue
            if note_contains and note_contains not in (txn.note or ""):
                continue
            matches.append(txn)

        # Sort by date descending (newest first)
        matches.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        end = offset + limit if limit is not None else None
        return matches[offset:end]


class GoogleSheetsTransactionLogStorage(_SheetStore, TransactionLogStorageInterface):
    """Amendment records, append-only."""

    columns = TRANSACTION_LOG_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.transaction_logs_sheet_name)

    def _row_to_log(self, row: list) -> TransactionLog:
        return TransactionLog(
            id=UUID(row[0]),
            transaction_id=UUID(row[1]),
            user_id=UUID(row[2]),
            modified_at=datetime.fromisoformat(row[3]),
            reason=row[4],
            old_data=json.loads(row[5]),
            new_data=json.loads(row[6]),
        )

    async def append_log(self, log: TransactionLog) -> bool:
        self._append([
            str(log.id),
            str(log.transaction_id),
            str(log.user_id),
            log.modified_at.isoformat(),
            log.reason,
            json.dumps(log.old_data),
            json.dumps(log.new_data),
        ])
        return True

    async def list_logs(self, transaction_id: UUID) -> list[TransactionLog]:
        logs = [
            self._row_to_log(row) for _, row in self._rows()
            if len(row) > 1 and row[1] == str(transaction_id)
        ]
        logs.reverse()
        return logs

    async def list_user_logs(self, user_id: UUID, limit: int = 50) -> list[TransactionLog]:
        logs = [
            self._row_to_log(row) for _, row in self._rows()
            if len(row) > 2 and row[2] == str(user_id)
        ]
        logs.reverse()
        return logs[:limit]


class GoogleSheetsAuditStorage(_SheetStore, AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    columns = AUDIT_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.audit_sheet_name)

    def _sheet(self) -> gspread.Worksheet:
        # More rows for the audit log
        return self._client.get_sheet(self._sheet_name, self.columns, rows=5000)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            user_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    def _events(self) -> list[AuditEvent]:
        events = []
        for idx, row in self._rows():
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("sheet_row_skipped", sheet=self._sheet_name, row=idx, error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are logged, never raised."""
        try:
            self._append(event.to_sheets_row())
            return True
        except StorageError as e:
            logger.warning("audit_write_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = self._events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
