"""
Streamlit Frontend for Moneyar

The screens a user works with daily: a dashboard, accounts and
transactions.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Clear error messages in simple language
3. Visual feedback for every mutation
4. No hidden actions

Mutations are shown optimistically: the edited row is rendered as
"pending" while the ledger call runs, then either folded in or dropped
with an error message. The last server read always shows through a
failed mutation unchanged.
"""

import asyncio
import threading
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

import streamlit as st

from moneyar.config import validate_all_settings
from moneyar.ledger import PendingOverlay, new_pending_key
from moneyar.ledger.service import LedgerService
from moneyar.models.ledger import (
    ACCOUNT_TYPE_LABELS,
    TRANSACTION_CATEGORY_LABELS,
    Account,
    AccountType,
    OperationResult,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from moneyar.orchestrator import AppComponents, create_app_components
from moneyar.queries import sort_recent
from moneyar.services.auth import RequestContext


# Page configuration
st.set_page_config(
    page_title="Moneyar",
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
    .pending-row {
        opacity: 0.55;
        font-style: italic;
    }
</style>
""", unsafe_allow_html=True)


# ledger method for each (entity, action) the UI can queue
OPERATIONS = {
    ("account", "create"): "create_account",
    ("account", "update"): "update_account",
    ("account", "delete"): "delete_account",
    ("transaction", "create"): "create_transaction",
    ("transaction", "update"): "update_transaction",
    ("transaction", "delete"): "delete_transaction",
}


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop; the async engine's connections are bound to it."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="moneyar-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return run_async(create_app_components())


def money(value: Decimal) -> str:
    return f"{value:,.2f}"


def show_failure(result: OperationResult, what: str) -> None:
    st.error(f"{what}: {result.error}")
    for detail in result.details:
        st.caption(f"• {detail}")


# =============================================================================
# Session state
# =============================================================================

def init_state(ctx: RequestContext) -> None:
    """Per-user overlays and the queue of mutations awaiting the ledger."""
    if st.session_state.get("state_user") != ctx.user_id:
        st.session_state.state_user = ctx.user_id
        st.session_state.overlays = {
            "account": PendingOverlay(),
            "transaction": PendingOverlay(),
        }
        st.session_state.pending_ops = []
        st.session_state.flash = []


def overlay(kind: str) -> PendingOverlay:
    return st.session_state.overlays[kind]


def queue(kind: str, action: str, key: str, **kwargs) -> None:
    st.session_state.pending_ops.append(
        {"kind": kind, "action": action, "key": key, "kwargs": kwargs}
    )
    st.rerun()


def refresh(ledger: LedgerService, ctx: RequestContext) -> None:
    """Re-read server state; on failure keep the last good snapshot."""
    accounts = run_async(ledger.list_accounts(ctx))
    if accounts.success:
        overlay("account").replace_snapshot(accounts.data)
    else:
        show_failure(accounts, "Could not refresh accounts")

    transactions = run_async(ledger.list_transactions(ctx))
    if transactions.success:
        overlay("transaction").replace_snapshot(transactions.data)
    else:
        show_failure(transactions, "Could not refresh transactions")


def flush_pending(ledger: LedgerService, ctx: RequestContext) -> None:
    """Send queued mutations to the ledger and settle their overlays."""
    ops = st.session_state.pending_ops
    if not ops:
        return
    st.session_state.pending_ops = []

    with st.spinner("Saving..."):
        for op in ops:
            method = getattr(ledger, OPERATIONS[(op["kind"], op["action"])])
            result = run_async(method(ctx, **op["kwargs"]))
            overlay(op["kind"]).reconcile(op["key"], result)
            if not result.success:
                st.session_state.flash.append(result)
    st.rerun()


def show_flash() -> None:
    for result in st.session_state.flash:
        show_failure(result, "Change not saved")
    st.session_state.flash = []


# =============================================================================
# Pages
# =============================================================================

def main():
    """Main application entry point."""
    components = get_components()
    ctx = run_async(components.sign_in.context_for(st.session_state.get("token")))

    if ctx is None:
        render_sign_in_page(components)
        return

    init_state(ctx)

    st.sidebar.title("💰 Moneyar")
    st.sidebar.markdown("---")
    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "🏦 Accounts", "💸 Transactions", "⚙️ Settings"],
        index=0,
    )
    st.sidebar.markdown("---")
    if st.sidebar.button("Sign out"):
        components.sign_in.sign_out(st.session_state.pop("token", None))
        st.rerun()

    show_flash()
    refresh(components.ledger, ctx)

    if page == "📊 Dashboard":
        render_dashboard_page(components.ledger, ctx)
    elif page == "🏦 Accounts":
        render_accounts_page(ctx)
    elif page == "💸 Transactions":
        render_transactions_page(ctx)
    elif page == "⚙️ Settings":
        render_settings_page(components)

    flush_pending(components.ledger, ctx)


def render_sign_in_page(components: AppComponents):
    st.title("💰 Moneyar")
    st.markdown("Sign in with your email to see your accounts.")

    with st.form("sign_in"):
        email = st.text_input("Email *")
        name = st.text_input("Name (optional)")
        submitted = st.form_submit_button("Sign in", type="primary")

    if submitted:
        result = run_async(components.sign_in.sign_in(email, name or None))
        if result.success:
            st.session_state.token = result.data.token
            st.rerun()
        show_failure(result, "Sign-in failed")


def render_dashboard_page(ledger: LedgerService, ctx: RequestContext):
    st.title("📊 Dashboard")

    result = run_async(ledger.get_dashboard(ctx))
    if not result.success:
        show_failure(result, "Could not load dashboard")
        return
    summary = result.data

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total balance", f"{summary.currency} {money(summary.total_balance)}")
    col2.metric("Income this month", money(summary.period_income))
    col3.metric("Expenses this month", money(summary.period_expenses))
    col4.metric("Net this month", money(summary.period_net))

    st.caption(
        f"{summary.account_count} account(s) · "
        f"{summary.period_transaction_count} transaction(s) between "
        f"{summary.period_start:%d %b} and {summary.period_end:%d %b %Y}"
    )

    st.markdown("### Recent activity")
    if not summary.recent_transactions:
        st.info("No transactions yet. Add one from the Transactions page.")
        return
    st.dataframe(
        [transaction_row(t) for t in summary.recent_transactions],
        use_container_width=True,
        hide_index=True,
    )


def transaction_row(t: Transaction, pending: Optional[str] = None) -> dict:
    sign = "+" if t.type == TransactionType.INCOME else "-"
    row = {
        "Date": t.date.strftime("%Y-%m-%d"),
        "Description": t.description,
        "Category": TRANSACTION_CATEGORY_LABELS[t.category],
        "Amount": f"{sign}{money(t.amount)}",
    }
    if pending:
        row["Status"] = f"⏳ {pending}"
    return row


def account_form(key: str, account: Optional[Account] = None) -> Optional[dict]:
    """Render an account form; returns submitted values or None."""
    types = list(AccountType)
    with st.form(key):
        name = st.text_input("Name *", value=account.name if account else "")
        account_type = st.selectbox(
            "Type *",
            options=types,
            index=types.index(account.type) if account else 0,
            format_func=lambda x: ACCOUNT_TYPE_LABELS[x],
        )
        balance = st.number_input(
            "Balance *" if account else "Opening balance",
            value=float(account.balance) if account else 0.0,
            step=0.01,
            format="%.2f",
            help="Editing this overrides the computed balance" if account else None,
        )
        bank = st.text_input("Bank (optional)", value=(account.bank or "") if account else "")
        submitted = st.form_submit_button("Save", type="primary")

    if not submitted:
        return None
    return {
        "name": name,
        "account_type": account_type,
        "balance": Decimal(str(balance)).quantize(Decimal("0.01")),
        "bank": bank or None,
    }


def render_accounts_page(ctx: RequestContext):
    st.title("🏦 Accounts")

    with st.expander("➕ New account"):
        values = account_form("new_account")
        if values:
            staged = Account.model_construct(
                id=new_pending_key(),
                name=values["name"],
                type=values["account_type"],
                balance=values["balance"],
                bank=values["bank"],
                user_id=ctx.user_id,
            )
            key = overlay("account").stage_create(staged)
            queue("account", "create", key, **values)

    rows = overlay("account").view()
    if not rows:
        st.info("No accounts yet.")
        return

    for row in rows:
        account = row.item
        label = f"{account.name} · {ACCOUNT_TYPE_LABELS[account.type]} · {money(account.balance)}"
        if row.is_pending:
            label = f"⏳ {label} ({row.pending_action.value} pending)"
        with st.expander(label):
            if row.is_pending:
                st.caption("Waiting for the server...")
                continue
            if account.bank:
                st.caption(f"Bank: {account.bank}")
            values = account_form(f"edit_{account.id}", account)
            if values:
                staged = account.model_copy(update={
                    "name": values["name"],
                    "type": values["account_type"],
                    "balance": values["balance"],
                    "bank": values["bank"],
                })
                key = overlay("account").stage_update(staged)
                queue("account", "update", key, account_id=account.id, **values)
            st.warning("Deleting an account also deletes all its transactions.")
            if st.button("🗑️ Delete account", key=f"del_{account.id}"):
                key = overlay("account").stage_delete(account.id)
                queue("account", "delete", key, account_id=account.id)


def transaction_form(
    key: str,
    accounts: list[Account],
    txn: Optional[Transaction] = None,
) -> Optional[dict]:
    """Render a transaction form; returns submitted values or None."""
    categories = list(TransactionCategory)
    with st.form(key):
        account_id = None
        if txn is None:
            account = st.selectbox(
                "Account *",
                options=accounts,
                format_func=lambda a: a.name,
            )
            account_id = account.id if account else None
        transaction_type = st.radio(
            "Type *",
            options=list(TransactionType),
            index=list(TransactionType).index(txn.type) if txn else 1,
            format_func=lambda x: x.value.title(),
            horizontal=True,
        )
        amount = st.number_input(
            "Amount *",
            value=float(txn.amount) if txn else 0.0,
            min_value=0.0,
            step=0.01,
            format="%.2f",
        )
        description = st.text_input("Description *", value=txn.description if txn else "")
        category = st.selectbox(
            "Category *",
            options=categories,
            index=categories.index(txn.category) if txn else 0,
            format_func=lambda x: TRANSACTION_CATEGORY_LABELS[x],
        )
        when = st.date_input("Date *", value=txn.date.date() if txn else date.today())
        submitted = st.form_submit_button("Save", type="primary")

    if not submitted:
        return None
    values = {
        "amount": Decimal(str(amount)).quantize(Decimal("0.01")),
        "description": description,
        "category": category,
        "transaction_type": transaction_type,
        "date": datetime.combine(when, time.min),
    }
    if txn is None:
        values["account_id"] = account_id
    return values


def staged_transaction(base: dict, values: dict) -> Transaction:
    return Transaction.model_construct(
        **base,
        amount=values["amount"],
        description=values["description"],
        category=values["category"],
        type=values["transaction_type"],
        date=values["date"],
    )


def render_transactions_page(ctx: RequestContext):
    st.title("💸 Transactions")

    accounts = [row.item for row in overlay("account").view() if not row.is_pending]
    if not accounts:
        st.info("Create an account first.")
        return

    with st.expander("➕ New transaction"):
        values = transaction_form("new_transaction", accounts)
        if values:
            staged = staged_transaction(
                {
                    "id": new_pending_key(),
                    "account_id": values["account_id"],
                    "user_id": ctx.user_id,
                },
                values,
            )
            key = overlay("transaction").stage_create(staged)
            queue("transaction", "create", key, **values)

    names = {a.id: a.name for a in accounts}
    account_filter = st.selectbox(
        "Account",
        options=[None] + list(names),
        format_func=lambda x: "All accounts" if x is None else names[x],
    )

    rows = overlay("transaction").view(
        sort_key=lambda t: (t.date, str(t.created_at)),
        reverse=True,
    )
    if account_filter:
        rows = [row for row in rows if row.item.account_id == account_filter]
    if not rows:
        st.info("No transactions to show.")
        return

    for row in rows:
        txn = row.item
        pending = row.pending_action.value if row.is_pending else None
        summary = transaction_row(txn, pending)
        label = " · ".join(str(v) for v in summary.values())
        with st.expander(label):
            if row.is_pending:
                st.caption("Waiting for the server...")
                continue
            st.caption(f"Account: {names.get(txn.account_id, 'unknown')}")
            values = transaction_form(f"edit_{txn.id}", accounts, txn)
            if values:
                base = txn.model_dump(exclude={"amount", "description", "category", "type", "date"})
                key = overlay("transaction").stage_update(staged_transaction(base, values))
                queue("transaction", "update", key, transaction_id=txn.id, **values)
            if st.button("🗑️ Delete transaction", key=f"del_{txn.id}"):
                key = overlay("transaction").stage_delete(txn.id)
                queue("transaction", "delete", key, transaction_id=txn.id)


def render_settings_page(components: AppComponents):
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")
    status = validate_all_settings()
    for name in ("database", "ledger", "session", "app"):
        if status.get(name, False):
            st.success(f"✅ {name.title()} settings loaded")
        else:
            st.error(f"❌ {name.title()} - {status.get(f'{name}_error', 'Not configured')}")

    st.markdown("---")
    st.markdown("### Recent audit events")
    events = components.audit_logger.history[-20:]
    if not events:
        st.info("Nothing logged yet in this process.")
    for event in reversed(events):
        st.text(f"{event.timestamp:%H:%M:%S} {event.event_type.value}: {event.description}")

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
