"""
components.py - reusable Streamlit components / forms / displays

This module contains pure-UI helpers used by the dashboard:
 - display_auth_form(session)
 - display_friends(ledger)
 - display_expense_form(on_submit, participants, categories, ...)
 - display_expense_list / manage expenses / category totals

Every call into the ledger or the session is wrapped so a LedgerError is
shown with st.error instead of stopping the script run.

The expense form enforces:
 - amount > 0
 - a description and a category
 - yourself is always part of the split (only friends are selectable)
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import time

import altair as alt
import pandas as pd
import streamlit as st

from friendsplit.errors import LedgerError, ParticipantInUseError
from friendsplit.export import expenses_to_dataframe
from friendsplit.models import Expense, Participant


# Trigger a Streamlit rerun in a way compatible with multiple Streamlit versions.
def trigger_rerun():
    if hasattr(st, "rerun"):
        st.rerun()
        return
    if hasattr(st, "experimental_rerun"):
        st.experimental_rerun()
        return
    # Last resort: mutate query params to force a rerun
    params = dict(st.query_params or {})
    params["_rerun"] = str(int(time.time()))
    st.query_params = params


@dataclass
class ExpenseInput:
    """Lightweight container passed to the on_submit callback."""
    description: str
    amount: float
    category: str
    participant_ids: List[str] = field(default_factory=list)


def format_balance(balance: float) -> str:
    if balance < 0:
        return f"${abs(balance):.2f} owes"
    return f"${balance:.2f} is owed"


def display_label(p: Participant) -> str:
    return "Yourself" if p.is_self else p.name


def expense_choices(expenses: List[Expense]) -> Dict[str, str]:
    """expense id -> selectbox label; the short id keeps look-alike expenses apart."""
    return {
        e.id: f"#{e.id[:6]} {e.description} {e.amount:.2f} ({e.category}) {e.created_at[:10]}"
        for e in expenses
    }


def display_auth_form(session):
    """Login / Sign Up screen. On success the session notifies the ledger and the page reruns."""
    mode = st.radio("Account", options=["Login", "Sign Up"], horizontal=True)
    st.header(mode)
    with st.form(key="auth_form"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button(mode)

    if submitted:
        try:
            if mode == "Sign Up":
                session.sign_up(email, password)
            else:
                session.sign_in(email, password)
        except LedgerError as exc:
            st.error(str(exc))
            return
        trigger_rerun()


def display_friends(ledger):
    """Roster with balances, an add-friend form and per-friend delete buttons."""
    st.header("Friends")
    with st.form(key="add_friend_form", clear_on_submit=True):
        name = st.text_input("Enter Friend's Name")
        if st.form_submit_button("Add Friend"):
            try:
                ledger.add_participant(name)
                st.success(f"Added {name.strip()}.")
            except LedgerError as exc:
                st.error(str(exc))

    for p in ledger.participants:
        col1, col2 = st.columns([4, 1])
        with col1:
            st.write(f"{display_label(p)}: {format_balance(p.balance)}")
        with col2:
            if not p.is_self and st.button("Delete", key=f"delete_friend_{p.id}"):
                try:
                    ledger.remove_participant(p.id)
                except ParticipantInUseError as exc:
                    st.error(f"{p.name} still has shares in {len(exc.expense_ids)} expense(s); delete those first.")
                    continue
                except LedgerError as exc:
                    st.error(str(exc))
                    continue
                trigger_rerun()

    drift = ledger.check_consistency()
    if drift:
        st.warning(f"{len(drift)} balance(s) do not match the recorded expenses. Check the server logs.")


def display_expense_form(on_submit: Callable[[ExpenseInput], None],
                         participants: List[Participant],
                         categories: List[str],
                         initial: Optional[Expense] = None):
    """
    Display the add (or, with `initial`, the edit) expense form.

    Parameters:
      - on_submit: callback invoked with ExpenseInput when the form validates;
        it may raise LedgerError, which is shown to the user
      - participants: roster; self is always included, friends are selectable
      - categories: options for the category dropdown
      - initial: expense whose values prefill the form
    """
    friends = [p for p in participants if not p.is_self]
    friend_labels = {p.id: p.name for p in friends}
    key = f"edit_expense_{initial.id}" if initial else "expense_form"
    submit_label = "Update Expense" if initial else "Add Expense"

    with st.form(key=key, clear_on_submit=initial is None):
        description = st.text_input("Description", value=initial.description if initial else "")
        amount = st.number_input(
            "Amount", min_value=0.0, format="%.2f", value=float(initial.amount) if initial else 0.0
        )
        cat_index = categories.index(initial.category) if initial and initial.category in categories else 0
        category = st.selectbox("Category", options=categories, index=cat_index)
        st.caption("Split with: Yourself (always included)")
        selected = st.multiselect(
            "Friends",
            options=list(friend_labels),
            default=[pid for pid in (initial.participants if initial else []) if pid in friend_labels],
            format_func=lambda pid: friend_labels[pid],
        )
        submit_button = st.form_submit_button(submit_label)

    if not submit_button:
        return
    if amount <= 0:
        st.error("Amount must be greater than 0.")
        return
    if not description.strip():
        st.error("Description is required.")
        return

    expense = ExpenseInput(
        description=description.strip(),
        amount=float(amount),
        category=category,
        participant_ids=list(selected),
    )
    try:
        on_submit(expense)
    except LedgerError as exc:
        st.error(str(exc))
        return
    st.success("Expense updated." if initial else "Expense added.")


def display_expense_list(expenses: List[Expense], participants: List[Participant],
                         total_amount: float, csv_text: str, xlsx_bytes: bytes):
    """
    Render expenses as a table with per-friend shares and CSV / XLSX downloads.
    """
    st.header("Expenses")
    if not expenses:
        st.write("No expenses recorded.")
        return

    df = expenses_to_dataframe(expenses, participants)
    st.dataframe(
        df.drop(columns=["id"]).style.format({"amount": "{:.2f}", "share_each": "{:.2f}"}),
        use_container_width=True,
    )

    labels: Dict[str, str] = {p.id: display_label(p) for p in participants}
    for e in expenses:
        with st.expander(f"{e.description} - ${e.amount:.2f} ({e.category})"):
            for pid in e.participants:
                st.write(f"{labels.get(pid, pid)} owes: ${e.share_owed.get(pid, 0.0):.2f}")

    st.markdown(f"**Total Expenses: ${total_amount:.2f}**")
    col1, col2 = st.columns(2)
    with col1:
        st.download_button(label="Export to CSV", data=csv_text, file_name="expenses.csv", mime="text/csv")
    with col2:
        st.download_button(
            label="Download as XLSX",
            data=xlsx_bytes,
            file_name="expenses.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )


def display_manage_expenses(ledger):
    """
    UI to select, edit and delete an existing expense of the ledger.
    """
    st.header("Edit / Delete Expense")
    exs = ledger.list_expenses()
    if not exs:
        st.info("No expenses recorded.")
        return

    choices = expense_choices(exs)
    selected_id = st.selectbox("Select expense", options=list(choices), format_func=lambda eid: choices[eid])
    expense = ledger.get_expense(selected_id)
    if expense is None:
        st.error("Selected expense not found.")
        return

    def on_submit(exp_input: ExpenseInput):
        updated = ledger.edit_expense(
            expense.id,
            description=exp_input.description,
            amount=exp_input.amount,
            category=exp_input.category,
            participant_ids=exp_input.participant_ids,
        )
        if updated is None:
            st.warning("This expense no longer exists.")

    display_expense_form(on_submit, list(ledger.participants), ledger.categories, initial=expense)

    # Delete UI (separate to avoid accidental deletes)
    st.markdown("---")
    st.write("Delete this expense")
    delete_confirm = st.checkbox("I confirm I want to delete this expense")
    if st.button("Delete expense") and delete_confirm:
        try:
            ok = ledger.delete_expense(expense.id)
        except LedgerError as exc:
            st.error(f"Error deleting expense: {exc}")
            return
        if ok:
            st.success("Expense deleted.")
            trigger_rerun()
        else:
            st.warning("This expense was already deleted.")


def display_category_totals(totals: Dict[str, float], categories: List[str]):
    """Show total amount per category with a pie chart; colors follow the category order."""
    st.header("Totals per Category")
    if not totals:
        st.write("No totals to display.")
        return

    total_amount = float(sum(totals.values()))
    st.write(f"Total: ${total_amount:.2f}")
    rows = []
    for cat, amt in totals.items():
        amt_f = float(amt)
        pct = (amt_f / total_amount * 100) if total_amount > 0 else 0.0
        st.write(f"  {cat}: ${amt_f:.2f} ({pct:.1f}%)")
        rows.append({"category": cat, "amount": amt_f, "percent": pct})
    df = pd.DataFrame(rows)

    ordered = [c for c in categories if c in totals]
    ordered += [c for c in totals if c not in ordered]
    PALETTE = ["#1f77b4", "#ff7f0e", "#2ca02c", "#d62728", "#9467bd",
               "#8c564b", "#e377c2", "#7f7f7f", "#bcbd22", "#17becf"]
    times = (len(ordered) + len(PALETTE) - 1) // len(PALETTE)
    colors = (PALETTE * max(1, times))[: len(ordered)]
    color_scale = alt.Scale(domain=ordered, range=colors)

    pie = alt.Chart(df).mark_arc(innerRadius=50).encode(
        theta=alt.Theta(field="amount", type="quantitative"),
        color=alt.Color(field="category", type="nominal", scale=color_scale,
                        legend=alt.Legend(title="Category"), sort=ordered),
        tooltip=[
            alt.Tooltip("category:N", title="Category"),
            alt.Tooltip("amount:Q", title="Amount", format=".2f"),
            alt.Tooltip("percent:Q", title="Share", format=".1f"),
        ],
    ).properties(title="Category share")
    st.altair_chart(pie, use_container_width=True)
