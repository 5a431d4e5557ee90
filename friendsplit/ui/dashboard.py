"""
dashboard.py - Streamlit UI entrypoint and orchestration

This module wires the UI components (friendsplit.ui.components) with the
ledger (friendsplit.ledger) and the session (friendsplit.session). The main()
function shows the sign-in screen or builds the sidebar menu and routes
actions to components and ledger methods.

Design notes:
 - One SessionService and one LedgerReconciler live in st.session_state per
   browser session; the ledger follows sign-in/sign-out through
   SessionService.on_identity_change.
 - All persistence and business rules live in friendsplit.ledger.
"""

import streamlit as st

from friendsplit.config import Settings
from friendsplit.errors import LedgerError
from friendsplit.ledger import LedgerReconciler
from friendsplit.session import SessionService
from friendsplit.storage import open_store
from friendsplit.ui import components


def _session_objects(settings: Settings):
    if "session" not in st.session_state:
        store = open_store(settings)
        session = SessionService(store)
        ledger = LedgerReconciler(store, self_name=settings.self_name, categories=settings.categories)
        session.on_identity_change(ledger.switch_owner)
        st.session_state["store"] = store
        st.session_state["session"] = session
        st.session_state["ledger"] = ledger
    return st.session_state["store"], st.session_state["session"], st.session_state["ledger"]


def main():
    """
    Streamlit page: sign-in screen, then a sidebar menu controls which view is shown.
    Actions:
      - Friends: roster with balances, add / delete friend
      - Add Expense: form split evenly over yourself and the selected friends
      - Expenses: category filter, table, CSV/XLSX export
      - Edit Expense: edit or delete a recorded expense
      - Category Totals: totals and pie chart per category
    """
    settings = Settings.from_env()
    settings.apply_log_level()
    st.title("Split Expenses with Friends")
    store, session, ledger = _session_objects(settings)

    identity = session.current_identity()
    if identity is None:
        components.display_auth_form(session)
        return
    if not ledger.signed_in:
        try:
            ledger.load(identity.uid)
        except LedgerError as exc:
            st.error(f"Could not load your ledger: {exc}")
            return

    backend_name, backend_msg = store.storage_status()
    if backend_name == "google_sheets":
        st.sidebar.success(backend_msg)
    else:
        st.sidebar.warning(backend_msg)
        st.sidebar.caption(
            "For cloud persistence, set GOOGLE_SHEET_ID and "
            "GOOGLE_SERVICE_ACCOUNT_JSON in Streamlit app Secrets."
        )
    st.sidebar.caption(f"Signed in as {identity.email}")
    if st.sidebar.button("Logout"):
        session.sign_out()
        components.trigger_rerun()

    menu = ["Friends", "Add Expense", "Expenses", "Edit Expense", "Category Totals"]
    choice = st.sidebar.selectbox("Select an option", menu)

    if choice == "Friends":
        components.display_friends(ledger)

    elif choice == "Add Expense":
        def on_submit(exp_input: components.ExpenseInput):
            ledger.add_expense(
                description=exp_input.description,
                amount=exp_input.amount,
                category=exp_input.category,
                participant_ids=exp_input.participant_ids,
            )

        st.header("Add Expense")
        components.display_expense_form(on_submit, list(ledger.participants), ledger.categories)

    elif choice == "Expenses":
        all_label = "All Categories"
        selected = st.selectbox("Filter category", options=[all_label] + ledger.categories)
        category = None if selected == all_label else selected
        components.display_expense_list(
            ledger.list_expenses(category),
            list(ledger.participants),
            total_amount=ledger.total_amount(category),
            csv_text=ledger.export_csv(category),
            xlsx_bytes=ledger.export_xlsx(category),
        )

    elif choice == "Edit Expense":
        components.display_manage_expenses(ledger)

    elif choice == "Category Totals":
        components.display_category_totals(ledger.category_totals(), ledger.categories)


if __name__ == "__main__":
    main()
