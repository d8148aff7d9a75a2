#!/usr/bin/env python3
"""
Violation Store

SQLite persistence for scans, violations, fixes, per-scan AI cost and an
audit trail. Audit events are written in the same transaction as the change
they record. Every row passes through the pydantic record schemas before it
is written, so the detection-method contract holds for anything other
tooling reads back.

Usage:
    from storage import ViolationStore

    store = ViolationStore("~/.ryn/ryn.db")
    store.commit_scan(result)
    open_items = store.list_violations(scan_id, status="open")
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from exceptions import StorageError
from hybrid.models import Fix, ScanCost, ScanResult, Violation, ViolationStatus, count_by_severity, utc_now
from schemas.records import AuditEventRecord, FixRecord, ScanCostRecord, ScanRecord, ViolationRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL,
    mode TEXT NOT NULL,
    state TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    files_scanned INTEGER NOT NULL DEFAULT 0,
    total_files INTEGER NOT NULL DEFAULT 0,
    violations_found INTEGER NOT NULL DEFAULT 0,
    critical_count INTEGER NOT NULL DEFAULT 0,
    high_count INTEGER NOT NULL DEFAULT 0,
    medium_count INTEGER NOT NULL DEFAULT 0,
    low_count INTEGER NOT NULL DEFAULT 0,
    error TEXT
);
CREATE TABLE IF NOT EXISTS violations (
    id TEXT PRIMARY KEY,
    scan_id TEXT NOT NULL,
    control_id TEXT NOT NULL,
    severity TEXT NOT NULL CHECK (severity IN ('critical', 'high', 'medium', 'low')),
    description TEXT NOT NULL,
    file_path TEXT NOT NULL,
    line_number INTEGER NOT NULL,
    code_snippet TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'fixed', 'dismissed')),
    detection_method TEXT NOT NULL DEFAULT 'regex' CHECK (detection_method IN ('regex', 'llm', 'hybrid')),
    confidence_score INTEGER,
    llm_reasoning TEXT,
    regex_reasoning TEXT,
    detected_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_violations_scan ON violations(scan_id, status);
CREATE TABLE IF NOT EXISTS fixes (
    id TEXT PRIMARY KEY,
    violation_id TEXT NOT NULL REFERENCES violations(id) ON DELETE CASCADE,
    original_code TEXT NOT NULL,
    fixed_code TEXT NOT NULL,
    explanation TEXT NOT NULL,
    trust_level TEXT NOT NULL CHECK (trust_level IN ('auto', 'review', 'manual')),
    applied_at TEXT,
    applied_by TEXT NOT NULL DEFAULT '',
    git_commit_sha TEXT
);
CREATE TABLE IF NOT EXISTS scan_costs (
    scan_id TEXT PRIMARY KEY,
    files_analyzed_with_llm INTEGER NOT NULL DEFAULT 0,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens INTEGER NOT NULL DEFAULT 0,
    cache_write_tokens INTEGER NOT NULL DEFAULT 0,
    total_cost_usd REAL NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    scan_id TEXT,
    violation_id TEXT,
    fix_id TEXT,
    description TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_events_type ON audit_events(event_type, created_at);
"""

_VIOLATION_COLUMNS = tuple(ViolationRecord.model_fields)
_FIX_COLUMNS = tuple(FixRecord.model_fields)
_COST_COLUMNS = tuple(ScanCostRecord.model_fields)
_SCAN_COLUMNS = tuple(ScanRecord.model_fields)
_AUDIT_COLUMNS = tuple(AuditEventRecord.model_fields)


def _insert_sql(table: str, columns: tuple) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


class ViolationStore:
    """Thread-safe SQLite store. ``":memory:"`` keeps everything in process."""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            path = Path(self.db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        logger.debug("Opened violation store at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                logger.error("Storage failure while %s: %s", action, e)
                raise StorageError(f"Failed {action}: {e}") from e

    @staticmethod
    def _validate(model, **data):
        try:
            return model(**data)
        except PydanticValidationError as e:
            raise StorageError(f"Invalid {model.__name__}: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _violation_rows(self, scan_id: str, violations: list[Violation]) -> list[tuple]:
        rows = []
        for v in violations:
            data = v.to_dict()
            data["scan_id"] = scan_id
            record = self._validate(ViolationRecord, **data)
            dumped = record.model_dump()
            rows.append(tuple(dumped[c] for c in _VIOLATION_COLUMNS))
        return rows

    def _scan_row(self, result: ScanResult, error: Optional[str] = None) -> tuple:
        counts = result.severity_counts or count_by_severity(result.violations)
        record = self._validate(
            ScanRecord,
            id=result.scan_id,
            project_path=result.project_path,
            mode=result.mode.value if hasattr(result.mode, "value") else result.mode,
            state=result.state,
            started_at=result.started_at,
            completed_at=result.completed_at,
            files_scanned=result.files_scanned,
            total_files=result.total_files,
            violations_found=len(result.violations),
            critical_count=counts.get("critical", 0),
            high_count=counts.get("high", 0),
            medium_count=counts.get("medium", 0),
            low_count=counts.get("low", 0),
            error=error,
        )
        dumped = record.model_dump()
        return tuple(dumped[c] for c in _SCAN_COLUMNS)

    def _cost_row(self, scan_id: str, cost: ScanCost) -> tuple:
        record = self._validate(ScanCostRecord, scan_id=scan_id, **cost.to_dict())
        dumped = record.model_dump()
        return tuple(dumped[c] for c in _COST_COLUMNS)

    def persist_violations(self, scan_id: str, violations: list[Violation]) -> int:
        """Write all violations in one transaction; nothing is written on failure."""
        rows = self._violation_rows(scan_id, violations)
        with self._transaction("persisting violations") as conn:
            conn.executemany(_insert_sql("violations", _VIOLATION_COLUMNS), rows)
        logger.info("Persisted %d violations for scan %s", len(rows), scan_id)
        return len(rows)

    def persist_fix(self, fix: Fix) -> None:
        record = self._validate(FixRecord, **fix.to_dict())
        dumped = record.model_dump()
        with self._transaction("persisting fix") as conn:
            conn.execute(_insert_sql("fixes", _FIX_COLUMNS), tuple(dumped[c] for c in _FIX_COLUMNS))
            target = self._violation_summary(conn, fix.violation_id)
            self._record_event(
                conn,
                "fix_generated",
                f"Generated {dumped['trust_level']} fix for violation: {target['description']}",
                scan_id=target["scan_id"],
                violation_id=fix.violation_id,
                fix_id=fix.id,
                metadata={"trust_level": dumped["trust_level"]},
            )

    def persist_cost(self, scan_id: str, cost: ScanCost) -> None:
        row = self._cost_row(scan_id, cost)
        with self._transaction("persisting scan cost") as conn:
            conn.execute(_insert_sql("scan_costs", _COST_COLUMNS), row)

    def persist_scan(self, result: ScanResult, error: Optional[str] = None) -> None:
        """Write only the scan row (used to record failed or cancelled scans)."""
        row = self._scan_row(result, error)
        event_type = "scan_cancelled" if result.state == "cancelled" else "scan_failed"
        with self._transaction("persisting scan") as conn:
            conn.execute(_insert_sql("scans", _SCAN_COLUMNS), row)
            self._record_event(
                conn,
                event_type,
                f"Scan {result.state} after {result.files_scanned} of {result.total_files} files",
                scan_id=result.scan_id,
                metadata={"error": error} if error else None,
            )

    def commit_scan(self, result: ScanResult) -> None:
        """Write scan row, violations, cost and the audit event atomically."""
        scan_row = self._scan_row(result)
        violation_rows = self._violation_rows(result.scan_id, result.violations)
        cost_row = self._cost_row(result.scan_id, result.cost)
        with self._transaction("committing scan") as conn:
            conn.execute(_insert_sql("scans", _SCAN_COLUMNS), scan_row)
            conn.executemany(_insert_sql("violations", _VIOLATION_COLUMNS), violation_rows)
            conn.execute(_insert_sql("scan_costs", _COST_COLUMNS), cost_row)
            self._record_event(
                conn,
                "scan_completed",
                f"Scanned {result.files_scanned} files, found {len(violation_rows)} violations",
                scan_id=result.scan_id,
                metadata={
                    "project_path": result.project_path,
                    "total_cost_usd": result.cost.total_cost_usd,
                },
            )
        logger.info(
            "Committed scan %s: %d violations, $%.4f",
            result.scan_id, len(violation_rows), result.cost.total_cost_usd,
        )

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def _record_event(
        self,
        conn: sqlite3.Connection,
        event_type: str,
        description: str,
        scan_id: Optional[str] = None,
        violation_id: Optional[str] = None,
        fix_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        record = self._validate(
            AuditEventRecord,
            event_type=event_type,
            scan_id=scan_id,
            violation_id=violation_id,
            fix_id=fix_id,
            description=description,
            metadata=json.dumps(metadata, sort_keys=True) if metadata else None,
            created_at=utc_now(),
        )
        dumped = record.model_dump()
        conn.execute(
            f"INSERT INTO audit_events ({', '.join(_AUDIT_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _AUDIT_COLUMNS)})",
            tuple(dumped[c] for c in _AUDIT_COLUMNS),
        )

    @staticmethod
    def _violation_summary(conn: sqlite3.Connection, violation_id: str) -> dict:
        row = conn.execute(
            "SELECT scan_id, description FROM violations WHERE id = ?", (violation_id,)
        ).fetchone()
        if row is None:
            raise StorageError(f"Violation {violation_id} not found")
        return dict(row)

    def list_audit_events(
        self,
        event_type: Optional[str] = None,
        scan_id: Optional[str] = None,
        violation_id: Optional[str] = None,
    ) -> list[dict]:
        """Audit events in the order they were written. ``metadata`` is decoded."""
        query = "SELECT * FROM audit_events WHERE 1 = 1"
        params: list = []
        for column, value in (("event_type", event_type), ("scan_id", scan_id), ("violation_id", violation_id)):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY id"
        with self._transaction("listing audit events") as conn:
            rows = conn.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            event["metadata"] = json.loads(event["metadata"]) if event["metadata"] else None
            events.append(event)
        return events

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _to_violation(row: sqlite3.Row) -> Violation:
        return Violation(**{key: row[key] for key in row.keys()})

    def get_violation(self, violation_id: str) -> Optional[Violation]:
        with self._transaction("reading violation") as conn:
            row = conn.execute("SELECT * FROM violations WHERE id = ?", (violation_id,)).fetchone()
        return self._to_violation(row) if row else None

    def list_violations(
        self, scan_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[Violation]:
        query = "SELECT * FROM violations WHERE 1 = 1"
        params: list = []
        if scan_id is not None:
            query += " AND scan_id = ?"
            params.append(scan_id)
        if status is not None:
            query += " AND status = ?"
            params.append(ViolationStatus(status).value)
        query += " ORDER BY file_path, line_number, id"
        with self._transaction("listing violations") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_violation(r) for r in rows]

    def get_fix(self, fix_id: str) -> Optional[Fix]:
        with self._transaction("reading fix") as conn:
            row = conn.execute("SELECT * FROM fixes WHERE id = ?", (fix_id,)).fetchone()
        return Fix(**{key: row[key] for key in row.keys()}) if row else None

    def list_fixes(self, violation_id: str) -> list[Fix]:
        with self._transaction("listing fixes") as conn:
            rows = conn.execute(
                "SELECT * FROM fixes WHERE violation_id = ? ORDER BY rowid", (violation_id,)
            ).fetchall()
        return [Fix(**{key: r[key] for key in r.keys()}) for r in rows]

    def get_scan(self, scan_id: str) -> Optional[dict]:
        with self._transaction("reading scan") as conn:
            row = conn.execute("SELECT * FROM scans WHERE id = ?", (scan_id,)).fetchone()
        return dict(row) if row else None

    def get_scan_cost(self, scan_id: str) -> Optional[ScanCost]:
        with self._transaction("reading scan cost") as conn:
            row = conn.execute("SELECT * FROM scan_costs WHERE scan_id = ?", (scan_id,)).fetchone()
        if not row:
            return None
        return ScanCost(**{key: row[key] for key in row.keys() if key != "scan_id"})

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _set_status(self, violation_id: str, status: ViolationStatus, event_type: str, verb: str) -> Violation:
        with self._transaction(f"marking violation {status.value}") as conn:
            target = self._violation_summary(conn, violation_id)
            conn.execute("UPDATE violations SET status = ? WHERE id = ?", (status.value, violation_id))
            self._record_event(
                conn,
                event_type,
                f"{verb} violation: {target['description']}",
                scan_id=target["scan_id"],
                violation_id=violation_id,
            )
        return self.get_violation(violation_id)

    def dismiss_violation(self, violation_id: str) -> Violation:
        return self._set_status(violation_id, ViolationStatus.DISMISSED, "violation_dismissed", "Dismissed")

    def mark_violation_fixed(self, violation_id: str) -> Violation:
        return self._set_status(violation_id, ViolationStatus.FIXED, "violation_fixed", "Marked fixed")

    def mark_fix_applied(self, fix: Fix) -> None:
        """Record the apply step: fix row, violation status and audit event in one transaction."""
        with self._transaction("recording applied fix") as conn:
            target = self._violation_summary(conn, fix.violation_id)
            cursor = conn.execute(
                "UPDATE fixes SET applied_at = ?, applied_by = ?, git_commit_sha = ? WHERE id = ?",
                (fix.applied_at, fix.applied_by, fix.git_commit_sha, fix.id),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"Fix {fix.id} not found")
            conn.execute(
                "UPDATE violations SET status = ? WHERE id = ?",
                (ViolationStatus.FIXED.value, fix.violation_id),
            )
            self._record_event(
                conn,
                "fix_applied",
                f"Applied fix for violation: {target['description']}",
                scan_id=target["scan_id"],
                violation_id=fix.violation_id,
                fix_id=fix.id,
                metadata={"applied_by": fix.applied_by, "git_commit_sha": fix.git_commit_sha},
            )

    def clear_all(self) -> None:
        """Delete every stored row. The trail restarts with a ``data_cleared`` event."""
        with self._transaction("clearing data") as conn:
            for table in ("fixes", "violations", "scan_costs", "scans", "audit_events"):
                conn.execute(f"DELETE FROM {table}")
            self._record_event(conn, "data_cleared", "Cleared all stored scan data")
        logger.info("Cleared all stored scan data")


__all__ = ["ViolationStore"]
