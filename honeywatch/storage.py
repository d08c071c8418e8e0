# honeywatch/storage.py

import json
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import ALERT, THREAT_INTEL_UPDATE, Notification

# place DB inside <repo>/data
DB_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)),
    "data",
    "honeywatch.db"
)


class SQLiteStorage:
    """
    History of alerts and threat intel updates.
    Subscribe record() to the event bus to fill it.
    """

    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        # monitors publish from their own threads
        self._lock = threading.Lock()

    def connect(self) -> None:
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def init_db(self) -> None:
        assert self.conn is not None
        cur = self.conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT,
                honeypot_id TEXT,
                level TEXT,
                text TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS threat_intel (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT,
                honeypot_id TEXT,
                property TEXT,
                value TEXT,
                status TEXT,
                source_ip TEXT
            )
            """
        )

        self.conn.commit()

    def record(self, notification: Notification) -> Optional[int]:
        """Store alerts and intel updates, ignore everything else."""
        if notification.kind == ALERT:
            return self.insert_alert(notification)
        if notification.kind == THREAT_INTEL_UPDATE:
            return self.insert_threat_intel(notification)
        return None

    def insert_alert(self, notification: Notification) -> int:
        assert self.conn is not None
        payload = notification.payload
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT INTO alerts (timestamp, honeypot_id, level, text)
                VALUES (?, ?, ?, ?)
                """,
                (
                    _now(),
                    notification.honeypot_id,
                    payload.get("level", ""),
                    payload.get("text", ""),
                ),
            )
            self.conn.commit()
            return cur.lastrowid

    def insert_threat_intel(self, notification: Notification) -> int:
        assert self.conn is not None
        payload = notification.payload
        value = payload.get("value")
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT INTO threat_intel
                    (timestamp, honeypot_id, property, value, status, source_ip)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    _now(),
                    notification.honeypot_id,
                    payload.get("property"),
                    None if value is None else json.dumps(value),
                    payload.get("status"),
                    payload.get("sourceIp"),
                ),
            )
            self.conn.commit()
            return cur.lastrowid

    def fetch_alerts(
        self,
        level: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict]:
        """
        Return alerts newest first as dictionaries, optional level filter.
        """
        assert self.conn is not None
        with self._lock:
            cur = self.conn.cursor()
            if level:
                cur.execute(
                    """
                    SELECT timestamp, honeypot_id, level, text
                    FROM alerts
                    WHERE LOWER(level) = LOWER(?)
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (level, limit),
                )
            else:
                cur.execute(
                    """
                    SELECT timestamp, honeypot_id, level, text
                    FROM alerts
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (limit,),
                )
            rows = cur.fetchall()

        return [dict(row) for row in rows]

    def fetch_threat_intel(self, limit: int = 500) -> List[Dict]:
        assert self.conn is not None
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                SELECT timestamp, honeypot_id, property, value, status, source_ip
                FROM threat_intel
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cur.fetchall()

        results: List[Dict] = []
        for row in rows:
            item = dict(row)
            if item["value"] is not None:
                item["value"] = json.loads(item["value"])
            results.append(item)
        return results


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# TEST BLOCK
if __name__ == "__main__":
    storage = SQLiteStorage()
    storage.connect()
    storage.init_db()

    alert_id = storage.record(Notification(
        kind=ALERT,
        payload={"text": "sample alert", "level": "info"},
        honeypot_id="honeypot-1",
    ))
    print(f"Inserted alert with id {alert_id}")
    print(f"Stored alerts: {len(storage.fetch_alerts())}")
