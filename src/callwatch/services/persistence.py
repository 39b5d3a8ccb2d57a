"""SQLite persistence for call sessions and alerts, plus analytics queries.

The store is independent from evaluation: callers may evaluate without
persisting, and a failure here never changes a result already returned.
All sqlite errors surface as ``PersistenceError``.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from callwatch.exceptions import PersistenceError
from callwatch.schemas.analytics import (
    AgentAlertCount,
    AlertsBySeverity,
    AnalyticsData,
    DailyAlertCount,
    RuleAlertCount,
    StoredAlert,
)
from callwatch.schemas.evaluation import Alert, CallMetadata

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS calls (
    call_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    agent_name TEXT NOT NULL,
    call_start_time TEXT NOT NULL,
    call_end_time TEXT,
    caller_timezone TEXT,
    is_dnc_listed INTEGER NOT NULL DEFAULT 0,
    has_prior_consent INTEGER NOT NULL DEFAULT 0,
    is_prerecorded INTEGER NOT NULL DEFAULT 0,
    call_type TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    call_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    agent_name TEXT NOT NULL,
    rule_id TEXT NOT NULL,
    title TEXT NOT NULL,
    severity TEXT NOT NULL,
    confidence INTEGER NOT NULL,
    quote TEXT NOT NULL,
    start_char INTEGER NOT NULL,
    end_char INTEGER NOT NULL,
    rationale TEXT NOT NULL,
    remediation TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (call_id) REFERENCES calls(call_id)
);

CREATE INDEX IF NOT EXISTS idx_alerts_call_id ON alerts(call_id);
CREATE INDEX IF NOT EXISTS idx_alerts_agent_id ON alerts(agent_id);
CREATE INDEX IF NOT EXISTS idx_alerts_severity ON alerts(severity);
CREATE INDEX IF NOT EXISTS idx_alerts_rule_id ON alerts(rule_id);
CREATE INDEX IF NOT EXISTS idx_alerts_created_at ON alerts(created_at);
"""

_ALERT_COLUMNS = (
    "id, call_id, agent_id, agent_name, rule_id, title, severity, confidence, "
    "quote, start_char, end_char, rationale, remediation, created_at"
)


class AlertStore:
    """Stores sessions and alerts in a single SQLite database."""

    def __init__(self, database_path: str) -> None:
        self._path = database_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(database_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open alert store {database_path}: {e}") from e
        logger.info("Alert store ready at %s", database_path)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                logger.error("Alert store failed to %s: %s", action, e)
                raise PersistenceError(f"Failed to {action}: {e}") from e

    # -- sessions ------------------------------------------------------------

    def start_call_session(self, metadata: CallMetadata) -> None:
        with self._transaction("start call session") as conn:
            conn.execute(
                """INSERT INTO calls (call_id, agent_id, agent_name, call_start_time,
                       caller_timezone, is_dnc_listed, has_prior_consent,
                       is_prerecorded, call_type)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    metadata.call_id,
                    metadata.agent_id,
                    metadata.agent_name,
                    metadata.call_start_time,
                    metadata.caller_timezone,
                    int(metadata.is_dnc_listed),
                    int(metadata.has_prior_consent),
                    int(metadata.is_prerecorded),
                    metadata.call_type,
                ),
            )

    def end_call_session(self, call_id: str) -> None:
        with self._transaction("end call session") as conn:
            conn.execute(
                "UPDATE calls SET call_end_time = CURRENT_TIMESTAMP WHERE call_id = ?",
                (call_id,),
            )

    # -- alerts --------------------------------------------------------------

    def insert_alert(
        self,
        alert: Alert,
        metadata: CallMetadata,
        *,
        created_at: str | None = None,
    ) -> None:
        columns = (
            "id, call_id, agent_id, agent_name, rule_id, title, severity, "
            "confidence, quote, start_char, end_char, rationale, remediation"
        )
        values: list[Any] = [
            alert.id,
            metadata.call_id,
            metadata.agent_id,
            metadata.agent_name,
            alert.rule_id,
            alert.title,
            alert.severity,
            alert.confidence,
            alert.evidence.quote,
            alert.evidence.start_char,
            alert.evidence.end_char,
            alert.rationale,
            alert.remediation,
        ]
        if created_at is not None:
            columns += ", created_at"
            values.append(created_at)
        placeholders = ", ".join("?" for _ in values)

        with self._transaction("insert alert") as conn:
            conn.execute(
                f"INSERT INTO alerts ({columns}) VALUES ({placeholders})", values
            )

    def get_alerts(
        self,
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        agent_id: str | None = None,
        severity: str | None = None,
        rule_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[StoredAlert]:
        """Stored alerts matching every given filter, newest first."""
        query = f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE 1=1"
        params: list[Any] = []

        for clause, value in (
            (" AND created_at >= ?", start_date),
            (" AND created_at <= ?", end_date),
            (" AND agent_id = ?", agent_id),
            (" AND severity = ?", severity),
            (" AND rule_id = ?", rule_id),
        ):
            if value is not None:
                query += clause
                params.append(value)

        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)

        with self._transaction("query alerts") as conn:
            rows = conn.execute(query, params).fetchall()
        return [StoredAlert(**dict(row)) for row in rows]

    # -- analytics -----------------------------------------------------------

    def get_analytics(self, start_date: str, end_date: str) -> AnalyticsData:
        window = (start_date, end_date)
        with self._transaction("compute analytics") as conn:
            total_calls = conn.execute(
                "SELECT COUNT(*) FROM calls WHERE created_at >= ? AND created_at <= ?",
                window,
            ).fetchone()[0]
            total_alerts = conn.execute(
                "SELECT COUNT(*) FROM alerts WHERE created_at >= ? AND created_at <= ?",
                window,
            ).fetchone()[0]

            by_severity = {
                row["severity"]: row["count"]
                for row in conn.execute(
                    """SELECT severity, COUNT(*) AS count FROM alerts
                       WHERE created_at >= ? AND created_at <= ?
                       GROUP BY severity""",
                    window,
                )
            }
            by_rule = [
                RuleAlertCount(rule_id=row["rule_id"], count=row["count"])
                for row in conn.execute(
                    """SELECT rule_id, COUNT(*) AS count FROM alerts
                       WHERE created_at >= ? AND created_at <= ?
                       GROUP BY rule_id ORDER BY count DESC, rule_id""",
                    window,
                )
            ]
            by_agent = [
                AgentAlertCount(
                    agent_id=row["agent_id"],
                    agent_name=row["agent_name"],
                    count=row["count"],
                )
                for row in conn.execute(
                    """SELECT agent_id, MAX(agent_name) AS agent_name, COUNT(*) AS count
                       FROM alerts
                       WHERE created_at >= ? AND created_at <= ?
                       GROUP BY agent_id ORDER BY count DESC, agent_id""",
                    window,
                )
            ]
            daily = [
                DailyAlertCount(date=row["date"], count=row["count"])
                for row in conn.execute(
                    """SELECT DATE(created_at) AS date, COUNT(*) AS count FROM alerts
                       WHERE created_at >= ? AND created_at <= ?
                       GROUP BY DATE(created_at) ORDER BY date""",
                    window,
                )
            ]

        return AnalyticsData(
            total_calls=total_calls,
            total_alerts=total_alerts,
            alerts_by_severity=AlertsBySeverity(
                high=by_severity.get("high", 0),
                medium=by_severity.get("medium", 0),
                low=by_severity.get("low", 0),
            ),
            alerts_by_rule=by_rule,
            alerts_by_agent=by_agent,
            daily_trend=daily,
        )

    def export_json(
        self,
        *,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> str:
        alerts = self.get_alerts(start_date=start_date, end_date=end_date)
        return json.dumps(
            [a.model_dump() for a in alerts], ensure_ascii=False, indent=2
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
