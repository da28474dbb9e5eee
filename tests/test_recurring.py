"""
Tests for the recurring schedule engine.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from finledger.errors import ConfigurationError, ValidationError
from finledger.ledger import add_months, advance, initial_run_date, should_execute
from finledger.models import AuditEventType, Frequency, RecurringTransaction, TransactionType


def make_definition(**overrides) -> RecurringTransaction:
    data = {
        "user_id": "00000000-0000-0000-0000-000000000001",
        "name": "Rent",
        "type": TransactionType.EXPENSE,
        "amount": Decimal("100"),
        "category": "Housing",
        "frequency": Frequency.MONTHLY,
        "start_date": datetime(2024, 1, 1),
        "next_run_date": datetime(2024, 1, 1),
    }
    data.update(overrides)
    return RecurringTransaction(**data)


class TestScheduleArithmetic:
    """Pure date stepping."""

    def test_month_end_clamps_and_recovers(self):
        """Jan 31 -> Feb 29 (leap year) -> Mar 31 when the preferred day is 31."""
        feb = advance(datetime(2024, 1, 31), Frequency.MONTHLY, day_of_month=31)
        mar = advance(feb, Frequency.MONTHLY, day_of_month=31)
        assert feb == datetime(2024, 2, 29)
        assert mar == datetime(2024, 3, 31)

    def test_month_end_non_leap_year(self):
        """February clamps to the 28th outside leap years."""
        assert add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)

    def test_quarterly_and_yearly(self):
        """Quarterly steps three months, yearly twelve."""
        assert advance(datetime(2024, 11, 30), Frequency.QUARTERLY, 30) == datetime(2025, 2, 28)
        assert advance(datetime(2024, 2, 29), Frequency.YEARLY, 29) == datetime(2025, 2, 28)

    def test_day_based_frequencies(self):
        """Daily, weekly and biweekly step by fixed days."""
        start = datetime(2024, 1, 1, 8, 30)
        assert advance(start, Frequency.DAILY) == datetime(2024, 1, 2, 8, 30)
        assert advance(start, Frequency.WEEKLY) == datetime(2024, 1, 8, 8, 30)
        assert advance(start, Frequency.BIWEEKLY) == datetime(2024, 1, 15, 8, 30)

    def test_initial_weekly_alignment(self):
        """day_of_week counts from Sunday = 0."""
        monday = datetime(2024, 1, 1)
        assert initial_run_date(monday, Frequency.WEEKLY, day_of_week=5) == datetime(2024, 1, 5)
        assert initial_run_date(monday, Frequency.WEEKLY, day_of_week=1) == monday
        assert initial_run_date(monday, Frequency.WEEKLY, day_of_week=0) == datetime(2024, 1, 7)

    def test_initial_monthly_alignment(self):
        """A preferred day already passed this month moves to next month."""
        start = datetime(2024, 1, 20)
        assert initial_run_date(start, Frequency.MONTHLY, day_of_month=25) == datetime(2024, 1, 25)
        assert initial_run_date(start, Frequency.MONTHLY, day_of_month=5) == datetime(2024, 2, 5)

    def test_initial_without_preference(self):
        """No preferred day means the first run is the start date."""
        start = datetime(2024, 1, 20)
        assert initial_run_date(start, Frequency.DAILY) == start


class TestShouldExecute:
    """Eligibility rules."""

    def test_due(self):
        """Active and due."""
        eligible, _ = should_execute(make_definition(), datetime(2024, 1, 1))
        assert eligible

    def test_not_yet_due(self):
        """Before next_run_date nothing runs."""
        eligible, reason = should_execute(make_definition(), datetime(2023, 12, 31))
        assert not eligible
        assert "Not due" in reason

    def test_manual_ignores_only_due_date(self):
        """A manual run skips the date check but not pause or limits."""
        early = datetime(2023, 12, 31)
        assert should_execute(make_definition(), early, ignore_schedule=True)[0]
        assert not should_execute(make_definition(is_paused=True), early, ignore_schedule=True)[0]
        assert not should_execute(
            make_definition(max_executions=2, total_executions=2), early, ignore_schedule=True
        )[0]

    def test_past_end_date(self):
        """Nothing runs after end_date."""
        definition = make_definition(end_date=datetime(2024, 1, 10))
        eligible, reason = should_execute(definition, datetime(2024, 1, 11))
        assert not eligible
        assert "ended" in reason


class TestRecurringEngine:
    """Executing definitions against the ledger."""

    async def _salary(self, ledger, user_id, account, **overrides):
        payload = {
            "name": "Salary",
            "type": "income",
            "to_account": account.id,
            "amount": Decimal("100"),
            "category": "Salary",
            "frequency": "monthly",
            "day_of_month": 31,
            "start_date": datetime(2024, 1, 31),
        }
        payload.update(overrides)
        return await ledger.recurring.create_definition(user_id, payload)

    @pytest.mark.asyncio
    async def test_month_end_schedule_with_limit(self, ledger, user_id, savings, clock, balance_of):
        """Runs on Jan 31, Feb 29 and Mar 31, then deactivates after three."""
        definition = await self._salary(ledger, user_id, savings, max_executions=3)
        assert definition.next_run_date == datetime(2024, 1, 31)

        run_dates = []
        for when in (datetime(2024, 1, 31), datetime(2024, 2, 29), datetime(2024, 3, 31)):
            clock.set(when)
            report = await ledger.run_scheduler_tick()
            assert report.executed_count == 1
            run_dates.append(report.executed[0].transaction.transaction_date)

        assert run_dates == [datetime(2024, 1, 31), datetime(2024, 2, 29), datetime(2024, 3, 31)]

        stored = await ledger.recurring.get_definition(user_id, definition.id)
        assert stored.total_executions == 3
        assert stored.is_active is False

        clock.set(datetime(2024, 4, 30))
        report = await ledger.run_scheduler_tick()
        assert report.due_count == 0
        assert await balance_of(savings.id) == Decimal("300")

    @pytest.mark.asyncio
    async def test_exhausted_definition_refuses_direct_runs(self, ledger, user_id, savings, clock, balance_of):
        """After max_executions both scheduled and manual execute calls are refused."""
        definition = await self._salary(ledger, user_id, savings, max_executions=3)
        for when in (datetime(2024, 1, 31), datetime(2024, 2, 29), datetime(2024, 3, 31)):
            clock.set(when)
            await ledger.recurring.execute(user_id, definition.id)

        clock.set(datetime(2024, 4, 30))
        scheduled = await ledger.recurring.execute(user_id, definition.id)
        manual = await ledger.execute_recurring(user_id, definition.id)

        for result in (scheduled, manual):
            assert result.executed is False
            assert result.transaction is None
        assert "not active" in manual.reason
        assert await balance_of(savings.id) == Decimal("300")
        assert len(await ledger.transactions.list_transactions(user_id)) == 3

    @pytest.mark.asyncio
    async def test_not_due_is_skipped(self, ledger, user_id, savings, clock):
        """A scheduled (non-manual) run before the due date does nothing."""
        definition = await self._salary(ledger, user_id, savings)
        result = await ledger.recurring.execute(user_id, definition.id)
        assert result.executed is False
        assert await ledger.transactions.list_transactions(user_id) == []

    @pytest.mark.asyncio
    async def test_manual_run_before_due(self, ledger, user_id, savings, balance_of):
        """A manual run executes early and advances the cursor by one step."""
        definition = await self._salary(ledger, user_id, savings)
        result = await ledger.execute_recurring(user_id, definition.id)

        assert result.executed is True
        assert result.definition.next_run_date == datetime(2024, 2, 29)
        assert result.transaction.note.startswith("[Auto: Salary]")
        assert await balance_of(savings.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_paused_definition_does_not_run(self, ledger, user_id, savings, clock):
        """Pausing stops both scheduled and manual runs until resumed."""
        definition = await self._salary(ledger, user_id, savings)
        paused = await ledger.recurring.toggle_pause(user_id, definition.id)
        assert paused.is_paused

        clock.set(datetime(2024, 2, 1))
        assert (await ledger.run_scheduler_tick()).due_count == 0
        result = await ledger.execute_recurring(user_id, definition.id)
        assert result.executed is False
        assert "paused" in result.reason

        resumed = await ledger.recurring.toggle_pause(user_id, definition.id)
        assert resumed.next_run_date == definition.next_run_date
        assert (await ledger.run_scheduler_tick()).executed_count == 1

    @pytest.mark.asyncio
    async def test_misconfigured_definition(self, ledger, user_id):
        """A template without the account its type needs raises ConfigurationError on run."""
        definition = await ledger.recurring.create_definition(user_id, {
            "name": "Broken",
            "type": "expense",
            "amount": Decimal("10"),
            "category": "Misc",
            "frequency": "daily",
        })
        with pytest.raises(ConfigurationError):
            await ledger.execute_recurring(user_id, definition.id)

    @pytest.mark.asyncio
    async def test_tick_continues_past_failures(self, ledger, storage, user_id, checking, savings, clock):
        """One failing definition is reported; the rest of the tick still runs."""
        await ledger.recurring.create_definition(user_id, {
            "name": "Too expensive",
            "type": "expense",
            "from_account": checking.id,
            "amount": Decimal("5000"),
            "category": "Car",
            "frequency": "monthly",
        })
        await ledger.recurring.create_definition(user_id, {
            "name": "Broken",
            "type": "income",
            "amount": Decimal("10"),
            "category": "Misc",
            "frequency": "daily",
        })
        await self._salary(ledger, user_id, savings, start_date=clock.now, day_of_month=None)

        report = await ledger.run_scheduler_tick()

        assert report.due_count == 3
        assert report.executed_count == 1
        assert sorted(f.error_type for f in report.failures) == [
            "ConfigurationError",
            "InsufficientFundsError",
        ]
        failed_events = [
            e for e in storage.audit.events if e.event_type == AuditEventType.RECURRING_FAILED
        ]
        assert len(failed_events) == 2

    @pytest.mark.asyncio
    async def test_note_must_leave_room_for_marker(self, ledger, user_id, savings):
        """A note that would overflow once "[Auto: name]" is prepended is rejected."""
        with pytest.raises(ValidationError):
            await self._salary(ledger, user_id, savings, note="x" * 495)

        definition = await self._salary(ledger, user_id, savings, note="x" * 484)
        with pytest.raises(ValidationError):
            await ledger.recurring.update_definition(user_id, definition.id, {"name": "Monthly salary"})

    @pytest.mark.asyncio
    async def test_tick_survives_unmaterializable_definition(
        self, ledger, storage, user_id, savings, clock, balance_of
    ):
        """A stored definition whose entry cannot be built fails alone; later ones still run."""
        clock.set(datetime(2024, 1, 12))
        bad = await self._salary(
            ledger, user_id, savings, name="Legacy", start_date=datetime(2024, 1, 10), day_of_month=None
        )
        # Written straight to storage, as a hand-edited row would be
        await storage.recurring.save_definition(bad.model_copy(update={"note": "x" * 495}))
        good = await self._salary(
            ledger, user_id, savings, start_date=datetime(2024, 1, 12), day_of_month=None
        )

        report = await ledger.run_scheduler_tick()

        assert report.due_count == 2
        assert [r.definition_id for r in report.executed] == [good.id]
        assert [(f.definition_id, f.error_type) for f in report.failures] == [(bad.id, "ValidationError")]
        assert await balance_of(savings.id) == Decimal("100")
        stored = await ledger.recurring.get_definition(user_id, bad.id)
        assert stored.total_executions == 0

    @pytest.mark.asyncio
    async def test_failed_run_leaves_definition_unchanged(self, ledger, user_id, checking, clock, balance_of):
        """An overdrawing run changes nothing, so the next tick retries it."""
        definition = await ledger.recurring.create_definition(user_id, {
            "name": "Big bill",
            "type": "expense",
            "from_account": checking.id,
            "amount": Decimal("1500"),
            "category": "Bills",
            "frequency": "monthly",
        })
        await ledger.run_scheduler_tick()

        stored = await ledger.recurring.get_definition(user_id, definition.id)
        assert stored.total_executions == 0
        assert stored.next_run_date == definition.next_run_date
        assert await balance_of(checking.id) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_concurrent_runs_execute_once(self, ledger, user_id, savings, clock):
        """Two simultaneous runs of the same due definition materialize one entry."""
        definition = await self._salary(ledger, user_id, savings, start_date=clock.now, day_of_month=None)

        results = await asyncio.gather(
            ledger.recurring.execute(user_id, definition.id),
            ledger.recurring.execute(user_id, definition.id),
        )

        assert sorted(r.executed for r in results) == [False, True]
        assert len(await ledger.transactions.list_transactions(user_id)) == 1

    @pytest.mark.asyncio
    async def test_execution_history(self, ledger, user_id, savings):
        """History finds the entries a definition produced through its note marker."""
        definition = await self._salary(ledger, user_id, savings)
        await ledger.execute_recurring(user_id, definition.id)
        await ledger.execute_recurring(user_id, definition.id)
        await ledger.create_transaction(user_id, {
            "type": "income",
            "to_account": savings.id,
            "amount": Decimal("5"),
            "category": "Salary",
        })

        history = await ledger.recurring.get_execution_history(user_id, definition.id)
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_upcoming_window(self, ledger, user_id, savings, clock):
        """Upcoming lists active unpaused definitions inside the window, grouped by day."""
        soon = await self._salary(ledger, user_id, savings, start_date=datetime(2024, 1, 20), day_of_month=None)
        await self._salary(ledger, user_id, savings, name="Later", start_date=datetime(2024, 6, 1), day_of_month=None)

        upcoming = await ledger.recurring.get_upcoming(user_id, days=30)
        assert [d.id for d in upcoming.items] == [soon.id]
        assert list(upcoming.by_date) == ["2024-01-20"]

    @pytest.mark.asyncio
    async def test_schedule_change_realigns_cursor(self, ledger, user_id, savings):
        """Changing day_of_month on an unexecuted definition moves its first run."""
        definition = await self._salary(ledger, user_id, savings, start_date=datetime(2024, 1, 10), day_of_month=None)
        updated = await ledger.recurring.update_definition(user_id, definition.id, {"day_of_month": 15})
        assert updated.next_run_date == datetime(2024, 1, 15)

    @pytest.mark.asyncio
    async def test_cursor_not_editable(self, ledger, user_id, savings):
        """next_run_date and counters are managed by the engine."""
        definition = await self._salary(ledger, user_id, savings)
        with pytest.raises(ValidationError):
            await ledger.recurring.update_definition(
                user_id, definition.id, {"next_run_date": datetime(2030, 1, 1)}
            )

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, ledger, user_id, savings):
        """end_date may not precede start_date."""
        with pytest.raises(ValidationError):
            await self._salary(ledger, user_id, savings, end_date=datetime(2023, 1, 1))

    @pytest.mark.asyncio
    async def test_delete_keeps_ledger_entries(self, ledger, user_id, savings):
        """Deleting a definition leaves what it already produced."""
        definition = await self._salary(ledger, user_id, savings)
        await ledger.execute_recurring(user_id, definition.id)
        await ledger.recurring.delete_definition(user_id, definition.id)

        assert await ledger.recurring.list_definitions(user_id) == []
        assert len(await ledger.transactions.list_transactions(user_id)) == 1
