import pytest

from friendsplit.storage import GoogleSheetsStore


class FakeWorksheet:
    """In-memory stand-in for a gspread Worksheet (only the calls the store makes).

    Set `fail_with` to an exception to make every write raise it, or
    `fail_reads` to make reads raise it.
    """

    def __init__(self):
        self.values = []
        self.row_count = 100
        self.col_count = 10
        self.fail_with = None
        self.fail_reads = None

    def row_values(self, row):
        return list(self.values[row - 1]) if len(self.values) >= row else []

    def get_all_values(self):
        if self.fail_reads is not None:
            raise self.fail_reads
        return [list(r) for r in self.values]

    def resize(self, rows, cols):
        self.row_count, self.col_count = rows, cols

    def update(self, range_name, values, value_input_option):
        if self.fail_with is not None:
            raise self.fail_with
        assert range_name == "A1"
        assert value_input_option == "RAW"
        self.values[: len(values)] = [[str(c) for c in row] for row in values]

    def batch_clear(self, ranges):
        if self.fail_with is not None:
            raise self.fail_with
        for rng in ranges:
            first_row = int(rng.split(":")[0].lstrip("A"))
            del self.values[first_row - 1:]


@pytest.fixture
def sheets_store():
    store = GoogleSheetsStore("")
    store._expenses_ws = FakeWorksheet()
    store._participants_ws = FakeWorksheet()
    store._accounts_ws = FakeWorksheet()
    store.available = True
    store._ensure_headers()
    return store
