"""
Streamlit Frontend for finledger

A small console over the ledger: accounts, transactions, recurring
schedules, budgets and investments.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every edit to a recorded transaction asks for a reason
3. Clear error messages in simple language
4. No hidden actions: scheduled runs happen only when asked for here
"""

import asyncio
from datetime import date, datetime, time
from decimal import Decimal
from uuid import NAMESPACE_URL, uuid5

import streamlit as st

from finledger.config import validate_all_settings
from finledger.errors import LedgerError, ValidationError
from finledger.models import (
    Frequency,
    InvestmentTransactionType,
    InvestmentType,
    PaymentMode,
    TransactionType,
)
from finledger.orchestrator import FinanceLedger, create_app_components


# Single-user console
USER_ID = uuid5(NAMESPACE_URL, "finledger://local-user")

# Page configuration
st.set_page_config(
    page_title="finledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_ledger() -> FinanceLedger:
    """Get or create the ledger (cached)."""
    try:
        return create_app_components()
    except Exception as e:
        st.error(f"Failed to initialize storage, using memory: {e}")
        return create_app_components(backend="memory")


def show_error(error: LedgerError):
    if isinstance(error, ValidationError) and error.issues:
        for issue in error.issues:
            st.error(f"❌ {issue.field}: {issue.message}")
    else:
        st.error(f"❌ {error}")


def account_options(ledger: FinanceLedger) -> dict:
    accounts = run_async(ledger.accounts.list_accounts(USER_ID))
    return {f"{a.account_name} ({a.balance})": a.id for a in accounts}


def main():
    """Main application entry point."""
    ledger = get_ledger()

    st.sidebar.title("💰 finledger")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["🏦 Accounts", "🧾 Transactions", "🔁 Recurring", "📊 Budgets", "📈 Investments", "⚙️ Settings"],
        index=0,
    )

    if page == "🏦 Accounts":
        render_accounts_page(ledger)
    elif page == "🧾 Transactions":
        render_transactions_page(ledger)
    elif page == "🔁 Recurring":
        render_recurring_page(ledger)
    elif page == "📊 Budgets":
        render_budgets_page(ledger)
    elif page == "📈 Investments":
        render_investments_page(ledger)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_accounts_page(ledger: FinanceLedger):
    st.title("🏦 Accounts")

    overview = run_async(ledger.analytics.account_overview(USER_ID))
    st.markdown(
        f'<div class="big-number">{overview["total_balance"]}</div>',
        unsafe_allow_html=True,
    )
    st.caption(f"Total across {overview['account_count']} accounts")

    for account in overview["accounts"]:
        col1, col2, col3 = st.columns([3, 2, 1])
        col1.markdown(f"{account.icon} **{account.account_name}** · {account.account_type}")
        col2.markdown(f"{account.currency.symbol} {account.balance}")
        if col3.button("Delete", key=f"del-{account.id}"):
            try:
                run_async(ledger.accounts.soft_delete_account(USER_ID, account.id))
                st.rerun()
            except LedgerError as e:
                show_error(e)

    with st.form("new-account"):
        st.markdown("### Open an account")
        name = st.text_input("Name")
        account_type = st.text_input("Type", value="bank")
        balance = st.number_input("Opening balance", min_value=0.0, step=100.0)
        if st.form_submit_button("Create", type="primary"):
            try:
                run_async(ledger.accounts.create_account(USER_ID, {
                    "account_name": name,
                    "account_type": account_type,
                    "balance": Decimal(str(balance)),
                }))
                st.success("✅ Account created")
                st.rerun()
            except LedgerError as e:
                show_error(e)


def render_transactions_page(ledger: FinanceLedger):
    st.title("🧾 Transactions")
    accounts = account_options(ledger)

    with st.form("new-transaction"):
        st.markdown("### Record a transaction")
        txn_type = st.selectbox("Type", list(TransactionType), format_func=lambda t: t.value.title())
        col1, col2 = st.columns(2)
        source = col1.selectbox("From account", [None] + list(accounts))
        target = col2.selectbox("To account", [None] + list(accounts))
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        category = st.text_input("Category")
        mode = st.selectbox("Payment mode", list(PaymentMode), format_func=lambda m: m.value)
        note = st.text_input("Note")
        if st.form_submit_button("Record", type="primary"):
            try:
                txn = run_async(ledger.create_transaction(USER_ID, {
                    "type": txn_type,
                    "from_account": accounts.get(source),
                    "to_account": accounts.get(target),
                    "amount": Decimal(str(amount)),
                    "category": category,
                    "payment_mode": mode,
                    "note": note or None,
                }))
                st.success(f"✅ Recorded {txn.type.value} of {txn.amount}")
            except LedgerError as e:
                show_error(e)

    st.markdown("---")
    transactions = run_async(ledger.transactions.list_transactions(USER_ID, limit=50))
    if not transactions:
        st.info("📋 No transactions yet.")
        return

    for txn in transactions:
        edited = " ✏️" if txn.was_edited else ""
        with st.expander(f"{txn.transaction_date:%d %b %Y} · {txn.category} · {txn.amount}{edited}"):
            st.markdown(f"**{txn.type.value.title()}** · {txn.payment_mode.value} · {txn.note or ''}")
            with st.form(f"amend-{txn.id}"):
                new_amount = st.number_input("Amount", value=float(txn.amount), min_value=0.01)
                new_category = st.text_input("Category", value=txn.category)
                reason = st.text_input("Reason for the change")
                if st.form_submit_button("Save change"):
                    changes = {}
                    if Decimal(str(new_amount)) != txn.amount:
                        changes["amount"] = Decimal(str(new_amount))
                    if new_category != txn.category:
                        changes["category"] = new_category
                    try:
                        run_async(ledger.amend_transaction(USER_ID, txn.id, changes, reason))
                        st.success("✅ Transaction updated")
                    except LedgerError as e:
                        show_error(e)

            detail = run_async(ledger.transactions.get_transaction_detail(USER_ID, txn.id))
            for log in detail.history:
                st.caption(f"{log.modified_at:%d %b %Y %H:%M} · {', '.join(log.changed_fields())} · {log.reason}")


def render_recurring_page(ledger: FinanceLedger):
    st.title("🔁 Recurring")

    if st.button("▶️ Run due schedules now"):
        report = run_async(ledger.run_scheduler_tick())
        st.info(f"{report.executed_count} executed, {report.failure_count} failed")
        for failure in report.failures:
            st.error(f"❌ {failure.error_type}: {failure.message}")

    definitions = run_async(ledger.recurring.list_definitions(USER_ID))
    for definition in definitions:
        paused = " (paused)" if definition.is_paused else ""
        inactive = " (finished)" if not definition.is_active else ""
        with st.expander(f"{definition.name} · {definition.frequency.value} · {definition.amount}{paused}{inactive}"):
            st.markdown(f"Next run: **{definition.next_run_date:%d %b %Y}** · runs so far: {definition.total_executions}")
            col1, col2 = st.columns(2)
            if col1.button("Run now", key=f"run-{definition.id}"):
                try:
                    result = run_async(ledger.execute_recurring(USER_ID, definition.id))
                    if result.executed:
                        st.success("✅ Executed")
                    else:
                        st.warning(result.reason)
                except LedgerError as e:
                    show_error(e)
            label = "Resume" if definition.is_paused else "Pause"
            if col2.button(label, key=f"pause-{definition.id}"):
                run_async(ledger.recurring.toggle_pause(USER_ID, definition.id))
                st.rerun()

            history = run_async(ledger.recurring.get_execution_history(USER_ID, definition.id))
            for txn in history:
                st.caption(f"{txn.transaction_date:%d %b %Y} · {txn.amount}")

    accounts = account_options(ledger)
    with st.form("new-recurring"):
        st.markdown("### New recurring transaction")
        name = st.text_input("Name")
        txn_type = st.selectbox("Type", list(TransactionType), format_func=lambda t: t.value.title())
        col1, col2 = st.columns(2)
        source = col1.selectbox("From account", [None] + list(accounts))
        target = col2.selectbox("To account", [None] + list(accounts))
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        category = st.text_input("Category")
        frequency = st.selectbox("Frequency", list(Frequency), format_func=lambda f: f.value)
        day_of_month = st.number_input("Day of month (monthly/quarterly/yearly)", min_value=0, max_value=31)
        start = st.date_input("Start date", value=date.today())
        if st.form_submit_button("Create", type="primary"):
            try:
                run_async(ledger.recurring.create_definition(USER_ID, {
                    "name": name,
                    "type": txn_type,
                    "from_account": accounts.get(source),
                    "to_account": accounts.get(target),
                    "amount": Decimal(str(amount)),
                    "category": category,
                    "frequency": frequency,
                    "day_of_month": int(day_of_month) or None,
                    "start_date": datetime.combine(start, time()),
                }))
                st.success("✅ Schedule created")
                st.rerun()
            except LedgerError as e:
                show_error(e)


def render_budgets_page(ledger: FinanceLedger):
    st.title("📊 Budgets")

    for alert in run_async(ledger.analytics.budget_alerts(USER_ID)):
        budget = alert["budget"]
        message = f"{budget.category}: {alert['spent_percent']}% of {budget.monthly_limit} spent"
        if alert["status"] == "over_budget":
            st.error(f"🚨 {message}")
        else:
            st.warning(f"⚠️ {message}")

    now = datetime.now()
    for budget in run_async(ledger.budgets.list_budgets(USER_ID, month=now.month, year=now.year)):
        st.progress(min(budget.spent_percent, 100) / 100, text=f"{budget.category} · {budget.current_spent} / {budget.monthly_limit}")

    with st.form("new-budget"):
        st.markdown("### Set a budget for this month")
        category = st.text_input("Category")
        limit = st.number_input("Monthly limit", min_value=0.0, step=100.0)
        if st.form_submit_button("Save", type="primary"):
            try:
                run_async(ledger.budgets.create_budget(USER_ID, {
                    "category": category,
                    "monthly_limit": Decimal(str(limit)),
                }))
                st.rerun()
            except LedgerError as e:
                show_error(e)


def render_investments_page(ledger: FinanceLedger):
    st.title("📈 Investments")

    portfolio = run_async(ledger.analytics.portfolio_analytics(USER_ID))
    col1, col2, col3 = st.columns(3)
    col1.metric("Invested", f"{portfolio['total_invested']}")
    col2.metric("Current value", f"{portfolio['total_current_value']}")
    col3.metric("Returns", f"{portfolio['total_returns']}", f"{portfolio['return_percent']:.2f}%")

    for inv in run_async(ledger.investments.list_investments(USER_ID)):
        with st.expander(f"{inv.name} · {inv.investment_type.value} · {inv.status.value}"):
            st.markdown(f"Units {inv.units} · value {inv.current_value} · P/L {inv.profit_loss}")
            if st.button("Compute XIRR", key=f"xirr-{inv.id}"):
                result = run_async(ledger.compute_xirr(USER_ID, inv.id))
                if result.converged:
                    st.success(f"XIRR {result.xirr:.2f}% · CAGR {result.cagr:.2f}%")
                else:
                    st.warning(f"XIRR did not converge (last estimate {result.xirr:.2f}%)")

            with st.form(f"inv-txn-{inv.id}"):
                kind = st.selectbox("Transaction", list(InvestmentTransactionType), format_func=lambda t: t.value)
                units = st.number_input("Units", min_value=0.0)
                amount = st.number_input("Amount", min_value=0.0)
                if st.form_submit_button("Record"):
                    try:
                        run_async(ledger.investments.add_transaction(USER_ID, inv.id, {
                            "type": kind,
                            "units": Decimal(str(units)),
                            "amount": Decimal(str(amount)),
                        }))
                        st.rerun()
                    except LedgerError as e:
                        show_error(e)

    accounts = account_options(ledger)
    with st.form("new-investment"):
        st.markdown("### Add an investment")
        name = st.text_input("Name")
        kind = st.selectbox("Type", list(InvestmentType), format_func=lambda t: t.value)
        account = st.selectbox("Account", list(accounts))
        invested = st.number_input("Invested amount", min_value=0.0)
        units = st.number_input("Units", min_value=0.0)
        if st.form_submit_button("Add", type="primary"):
            try:
                run_async(ledger.investments.create_investment(USER_ID, {
                    "name": name,
                    "investment_type": kind,
                    "account_id": accounts.get(account),
                    "invested_amount": Decimal(str(invested)),
                    "units": Decimal(str(units)),
                }))
                st.rerun()
            except LedgerError as e:
                show_error(e)


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()
    sections = [
        ("Ledger defaults", "ledger"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "Set `STORAGE_BACKEND=google_sheets` and the `GOOGLE_SHEETS_*` variables "
        "to persist to a spreadsheet."
    )


if __name__ == "__main__":
    main()
