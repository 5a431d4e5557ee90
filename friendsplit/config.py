"""
config.py - runtime settings read from the environment

Values come from process environment variables, optionally preloaded from a
`.env` file. On Streamlit Cloud, app.py copies the app secrets into the
environment before this module is used.
"""

from dataclasses import dataclass, field
from typing import List, Mapping, Optional
import logging
import os

from dotenv import load_dotenv

DEFAULT_CATEGORIES = ["Food", "Travel", "Bills", "Entertainment", "Other"]
DEFAULT_SELF_NAME = "me"
DEFAULT_DATA_DIR = os.path.join(os.path.dirname(__file__), "..", "data")


@dataclass
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    self_name: str = DEFAULT_SELF_NAME
    categories: List[str] = field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    log_level: str = "INFO"
    google_sheet_id: str = ""
    google_service_account_json: str = ""
    google_service_account_file: str = ""

    @property
    def ledger_file(self) -> str:
        return os.path.join(self.data_dir, "ledger_data.json")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ

        def get(key: str, default: str = "") -> str:
            return (environ.get(key) or default).strip()

        raw_categories = get("FRIENDSPLIT_CATEGORIES")
        categories = [c.strip() for c in raw_categories.split(",") if c.strip()]
        return cls(
            data_dir=get("FRIENDSPLIT_DATA_DIR", DEFAULT_DATA_DIR),
            self_name=get("FRIENDSPLIT_SELF_NAME", DEFAULT_SELF_NAME),
            categories=categories or list(DEFAULT_CATEGORIES),
            log_level=get("FRIENDSPLIT_LOG_LEVEL", "INFO").upper(),
            google_sheet_id=get("GOOGLE_SHEET_ID"),
            google_service_account_json=get("GOOGLE_SERVICE_ACCOUNT_JSON"),
            google_service_account_file=get("GOOGLE_SERVICE_ACCOUNT_FILE"),
        )

    def apply_log_level(self):
        level = logging.getLevelName(self.log_level)
        if not isinstance(level, int):
            level = logging.INFO
        for name in ("friendsplit.ledger", "friendsplit.storage", "friendsplit.session"):
            logging.getLogger(name).setLevel(level)
