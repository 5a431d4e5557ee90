"""
export.py - flat CSV text and XLSX workbook exports of the expense list
"""

from io import BytesIO
from typing import Dict, List, Optional

import pandas as pd

from friendsplit.models import Expense, Participant
from friendsplit.splits import filter_by_category

CSV_COLUMNS = ["Description", "Amount", "Category"]


def format_amount(amount: float) -> str:
    """Whole amounts without a trailing .0 (20 rather than 20.0), others at full precision."""
    amount = float(amount)
    if amount.is_integer():
        return str(int(amount))
    return repr(amount)


def expenses_to_csv(expenses: List[Expense], category: Optional[str] = None) -> str:
    """One `description,amount,category` row per visible expense, after a header line."""
    rows = [
        {"Description": e.description, "Amount": format_amount(e.amount), "Category": e.category}
        for e in filter_by_category(expenses, category)
    ]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n")


def expenses_to_dataframe(expenses: List[Expense], participants: List[Participant]) -> pd.DataFrame:
    names: Dict[str, str] = {p.id: p.name for p in participants}
    rows = []
    for e in expenses:
        rows.append({
            "id": e.id,
            "created_at": e.created_at,
            "description": e.description,
            "category": e.category,
            "amount": float(e.amount),
            # participants stored as ids -> names for display/export
            "participants": ", ".join(names.get(pid, pid) for pid in e.participants),
            "share_each": float(e.amount) / len(e.participants) if e.participants else 0.0,
        })
    return pd.DataFrame(
        rows,
        columns=["id", "created_at", "description", "category", "amount", "participants", "share_each"],
    )


def expenses_to_xlsx(expenses: List[Expense], participants: List[Participant]) -> bytes:
    df = expenses_to_dataframe(expenses, participants)
    totals = df.groupby("category", sort=False)["amount"].sum().reset_index()
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="expenses")
        totals.to_excel(writer, index=False, sheet_name="totals_by_category")
    buffer.seek(0)
    return buffer.getvalue()
