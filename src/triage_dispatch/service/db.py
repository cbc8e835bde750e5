from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from triage_dispatch.models import ACTIVE_STATUSES, Case, TimelineEntry
from triage_dispatch.serialization import case_from_dict, to_dict


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cases (
                id TEXT PRIMARY KEY,
                requester_id TEXT NOT NULL,
                status TEXT NOT NULL,
                severity TEXT NOT NULL,
                category TEXT NOT NULL,
                degraded INTEGER NOT NULL DEFAULT 0,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS case_timeline (
                case_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                status TEXT NOT NULL,
                at TEXT NOT NULL,
                note TEXT,
                PRIMARY KEY (case_id, seq),
                FOREIGN KEY(case_id) REFERENCES cases(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cases_requester ON cases (requester_id, status)")


@contextmanager
def get_conn(db_path: Path):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteCaseStore:
    """Case snapshots keyed by id, with the timeline kept as append-only rows."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()
        init_db(self.db_path)

    def get(self, case_id: str) -> Optional[Case]:
        with get_conn(self.db_path) as conn:
            row = conn.execute("SELECT payload FROM cases WHERE id=?", (case_id,)).fetchone()
        return case_from_dict(json.loads(row["payload"])) if row else None

    def save(self, case: Case) -> None:
        payload = json.dumps(to_dict(case))
        degraded = int(bool(case.assignment and case.assignment.degraded))
        with self._write_lock, get_conn(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO cases (id,requester_id,status,severity,category,degraded,payload,created_at,updated_at)
                VALUES (?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET status=excluded.status, payload=excluded.payload,
                    updated_at=excluded.updated_at
                """,
                (
                    case.case_id,
                    case.requester_id,
                    case.status,
                    case.triage.severity,
                    case.triage.category,
                    degraded,
                    payload,
                    case.created_at.isoformat(),
                    now_iso(),
                ),
            )
            stored = conn.execute(
                "SELECT COUNT(*) AS c FROM case_timeline WHERE case_id=?", (case.case_id,)
            ).fetchone()["c"]
            for seq, entry in enumerate(case.timeline[stored:], start=stored):
                conn.execute(
                    "INSERT INTO case_timeline (case_id,seq,status,at,note) VALUES (?,?,?,?,?)",
                    (case.case_id, seq, entry.status, entry.at.isoformat(), entry.note),
                )

    def active_for(self, requester_id: str) -> Optional[Case]:
        placeholders = ",".join("?" for _ in ACTIVE_STATUSES)
        with get_conn(self.db_path) as conn:
            row = conn.execute(
                f"SELECT payload FROM cases WHERE requester_id=? AND status IN ({placeholders}) "
                "ORDER BY created_at DESC LIMIT 1",
                (requester_id, *sorted(ACTIVE_STATUSES)),
            ).fetchone()
        return case_from_dict(json.loads(row["payload"])) if row else None

    def all(self) -> List[Case]:
        with get_conn(self.db_path) as conn:
            rows = conn.execute("SELECT payload FROM cases ORDER BY created_at").fetchall()
        return [case_from_dict(json.loads(row["payload"])) for row in rows]

    def timeline(self, case_id: str) -> List[TimelineEntry]:
        with get_conn(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, at, note FROM case_timeline WHERE case_id=? ORDER BY seq", (case_id,)
            ).fetchall()
        return [TimelineEntry(row["status"], datetime.fromisoformat(row["at"]), row["note"]) for row in rows]

    def status_counts(self) -> dict:
        with get_conn(self.db_path) as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS c FROM cases GROUP BY status").fetchall()
        return {row["status"]: row["c"] for row in rows}
