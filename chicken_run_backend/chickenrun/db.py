# chicken_run_backend/chickenrun/db.py

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field, asdict

from chickenrun import config

logger = logging.getLogger("uvicorn.error")


@dataclass
class PlayerSession:
    """Aggregate player state that outlives a single round."""
    VERSION = 1

    balance: float = config.START_BALANCE
    total_bet: float = 0.0
    total_win: float = 0.0
    total_loss: float = 0.0
    rollover: float = 0.0
    history: list = field(default_factory=list)
    round: int = 0

    def record_multiplier(self, multiplier: float):
        self.history.append(multiplier)
        if len(self.history) > config.HISTORY_LIMIT:
            del self.history[: len(self.history) - config.HISTORY_LIMIT]

    def reset(self):
        defaults = PlayerSession()
        self.balance = defaults.balance
        self.total_bet = defaults.total_bet
        self.total_win = defaults.total_win
        self.total_loss = defaults.total_loss
        self.rollover = defaults.rollover
        self.history = defaults.history
        self.round = defaults.round

    def to_dict(self) -> dict:
        data = asdict(self)
        data["history"] = data["history"][-config.HISTORY_LIMIT:]
        data["version"] = self.VERSION
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerSession":
        """Builds a session from a stored snapshot; missing fields take their defaults."""
        defaults = cls()
        history = data.get("history")
        if not isinstance(history, list):
            history = []
        return cls(
            balance=float(data.get("balance", defaults.balance)),
            total_bet=float(data.get("total_bet", defaults.total_bet)),
            total_win=float(data.get("total_win", defaults.total_win)),
            total_loss=float(data.get("total_loss", defaults.total_loss)),
            rollover=float(data.get("rollover", defaults.rollover)),
            history=[float(m) for m in history][-config.HISTORY_LIMIT:],
            round=int(data.get("round", defaults.round)),
        )


class SessionStore:
    """Keeps the serialized PlayerSession in sqlite under a fixed namespace key."""

    def __init__(self, database_url: str = config.DATABASE_URL, namespace: str = config.SAVE_KEY):
        self.database_url = database_url
        self.namespace = namespace
        # One connection per thread, as the event loop and test clients may differ
        self._local = threading.local()

    def get_db(self) -> sqlite3.Connection:
        if not hasattr(self._local, "db"):
            self._local.db = sqlite3.connect(self.database_url, check_same_thread=False)
            self._local.db.row_factory = sqlite3.Row
        return self._local.db

    def init_db(self):
        db = self.get_db()
        cursor = db.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS saves (
                namespace TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)
        db.commit()
        print("Database initialized.")

    def load(self) -> PlayerSession:
        """Loads the saved session. Anything missing or unreadable yields a fresh one."""
        try:
            cursor = self.get_db().cursor()
            cursor.execute("SELECT payload FROM saves WHERE namespace = ?", (self.namespace,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.warning(f"[STORE] read failed, starting fresh: {e}")
            return PlayerSession()
        if row is None:
            return PlayerSession()

        try:
            data = json.loads(row["payload"])
            if not isinstance(data, dict):
                raise ValueError("snapshot is not an object")
            return PlayerSession.from_dict(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"[STORE] corrupt snapshot for {self.namespace!r}, starting fresh: {e}")
            return PlayerSession()

    def save(self, session: PlayerSession):
        db = self.get_db()
        db.execute(
            "INSERT INTO saves (namespace, payload, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
            "ON CONFLICT(namespace) DO UPDATE SET payload = excluded.payload, updated_at = CURRENT_TIMESTAMP",
            (self.namespace, json.dumps(session.to_dict())),
        )
        db.commit()

    def clear(self):
        db = self.get_db()
        db.execute("DELETE FROM saves WHERE namespace = ?", (self.namespace,))
        db.commit()
