#!/usr/bin/env python3
"""
SQLite storage for Doorlock Hub.

Holds the door/device registry, the command ledger, schedule windows and the
heartbeat history. Every call is serialised through one asyncio.Lock; the
connection is only ever touched from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from typing import Any

from config import DB_PATH, PING_COUNT_WINDOWS
from models import CommandLogEntry, DoorTarget, ScheduleWindow
from utils import iso_from_epoch

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS devices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_no TEXT NOT NULL,
        mac TEXT NOT NULL UNIQUE
    );
    CREATE TABLE IF NOT EXISTS doors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        floor INTEGER NOT NULL,
        room_no TEXT NOT NULL,
        device_id INTEGER REFERENCES devices(id) ON DELETE SET NULL
    );
    CREATE TABLE IF NOT EXISTS command_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        door_id INTEGER NOT NULL REFERENCES doors(id) ON DELETE CASCADE,
        action TEXT NOT NULL,
        requested_at REAL NOT NULL,
        ack_at REAL,
        latency_ms INTEGER
    );
    CREATE TABLE IF NOT EXISTS schedules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        door_id INTEGER NOT NULL REFERENCES doors(id) ON DELETE CASCADE,
        schedule_date TEXT NOT NULL,
        open_time TEXT NOT NULL,
        close_time TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        open_sent_at REAL,
        close_sent_at REAL,
        updated_at REAL,
        CONSTRAINT uniq_schedule_door_date UNIQUE (door_id, schedule_date)
    );
    CREATE TABLE IF NOT EXISTS ping_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        door_id INTEGER NOT NULL REFERENCES doors(id) ON DELETE CASCADE,
        ping_at REAL NOT NULL
    );
"""

INDEXES_SQL = """
    CREATE INDEX IF NOT EXISTS idx_ping_door_time ON ping_logs(door_id, ping_at);
    CREATE INDEX IF NOT EXISTS idx_cmd_door ON command_logs(door_id, requested_at);
    CREATE INDEX IF NOT EXISTS idx_schedule_date ON schedules(schedule_date);
"""

_SCHEDULE_SELECT = """
    SELECT s.id, s.door_id, s.schedule_date, s.open_time, s.close_time,
           s.enabled, s.open_sent_at, s.close_sent_at,
           d.floor, d.room_no, c.mac
      FROM schedules s
      JOIN doors d ON d.id = s.door_id
      LEFT JOIN devices c ON c.id = d.device_id
"""

_SENT_COLUMNS = {"open": "open_sent_at", "close": "close_sent_at"}


def init_sqlite_db(db_path: str, schema_sql: str, indexes_sql: str = "") -> sqlite3.Connection:
    """Open (creating if needed) a SQLite database and apply the schema."""
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(schema_sql)
    if indexes_sql:
        conn.executescript(indexes_sql)
    return conn


def _schedule_from_row(row: sqlite3.Row) -> ScheduleWindow:
    return ScheduleWindow(
        id=row["id"],
        door_id=row["door_id"],
        schedule_date=row["schedule_date"],
        open_time=row["open_time"],
        close_time=row["close_time"],
        enabled=bool(row["enabled"]),
        open_sent_at=row["open_sent_at"],
        close_sent_at=row["close_sent_at"],
        floor=row["floor"],
        room_no=row["room_no"],
        mac=row["mac"],
    )


def _command_from_row(row: sqlite3.Row) -> CommandLogEntry:
    return CommandLogEntry(
        id=row["id"],
        door_id=row["door_id"],
        action=row["action"],
        requested_at=row["requested_at"],
        ack_at=row["ack_at"],
        latency_ms=row["latency_ms"],
    )


class DoorlockStore:
    """Persistent store (SQLite) behind the command and schedule engine."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self.conn = init_sqlite_db(db_path, SCHEMA_SQL, INDEXES_SQL)
        self.lock = asyncio.Lock()
        logger.info(f"Store: initialised ({self.db_path})")

    def close(self) -> None:
        self.conn.close()

    def _write(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        cur = self.conn.execute(sql, params)
        self.conn.commit()
        return cur

    # ------------------------------------------------------------------
    # Registry (master data is owned elsewhere; these are seeding helpers)
    # ------------------------------------------------------------------

    async def add_device(self, device_no: str, mac: str) -> int:
        async with self.lock:
            cur = self._write(
                "INSERT INTO devices (device_no, mac) VALUES (?, ?)",
                (device_no, mac),
            )
            return int(cur.lastrowid)

    async def add_door(self, floor: int, room_no: str, device_id: int | None = None) -> int:
        async with self.lock:
            cur = self._write(
                "INSERT INTO doors (floor, room_no, device_id) VALUES (?, ?, ?)",
                (floor, room_no, device_id),
            )
            return int(cur.lastrowid)

    async def bind_device(self, door_id: int, device_id: int | None) -> None:
        async with self.lock:
            self._write(
                "UPDATE doors SET device_id = ? WHERE id = ?", (device_id, door_id)
            )

    async def list_doors(self) -> list[dict[str, Any]]:
        async with self.lock:
            rows = self.conn.execute("""
                SELECT d.id, d.floor, d.room_no, d.device_id, c.device_no, c.mac
                  FROM doors d
                  LEFT JOIN devices c ON c.id = d.device_id
                 ORDER BY d.floor, d.room_no
            """).fetchall()
        return [dict(r) for r in rows]

    async def door_for_device(self, mac: str) -> DoorTarget | None:
        """Door currently bound to a device identifier, if any."""
        async with self.lock:
            row = self.conn.execute("""
                SELECT d.id, d.floor, d.room_no, c.mac, c.device_no
                  FROM doors d
                  JOIN devices c ON c.id = d.device_id
                 WHERE c.mac = ?
                 ORDER BY d.id
                 LIMIT 1
            """, (mac,)).fetchone()
        return DoorTarget(**dict(row)) if row else None

    async def door_with_device(self, door_id: int) -> DoorTarget | None:
        """Door by id with its bound device (mac is None when unbound)."""
        async with self.lock:
            row = self.conn.execute("""
                SELECT d.id, d.floor, d.room_no, c.mac, c.device_no
                  FROM doors d
                  LEFT JOIN devices c ON c.id = d.device_id
                 WHERE d.id = ?
            """, (door_id,)).fetchone()
        return DoorTarget(**dict(row)) if row else None

    # ------------------------------------------------------------------
    # Command ledger
    # ------------------------------------------------------------------

    async def insert_command_log(self, door_id: int, action: str, requested_at: float) -> int:
        async with self.lock:
            cur = self._write(
                "INSERT INTO command_logs (door_id, action, requested_at) VALUES (?, ?, ?)",
                (door_id, action, requested_at),
            )
            return int(cur.lastrowid)

    async def get_command_log(self, log_id: int) -> CommandLogEntry | None:
        async with self.lock:
            row = self.conn.execute(
                "SELECT * FROM command_logs WHERE id = ?", (log_id,)
            ).fetchone()
        return _command_from_row(row) if row else None

    async def acknowledge_command(self, log_id: int, ack_at: float) -> CommandLogEntry | None:
        """Set ack_at/latency once. Returns the entry, or None if already acked."""
        async with self.lock:
            cur = self._write("""
                UPDATE command_logs
                   SET ack_at = ?,
                       latency_ms = CAST(ROUND((? - requested_at) * 1000) AS INTEGER)
                 WHERE id = ? AND ack_at IS NULL
            """, (ack_at, ack_at, log_id))
            if cur.rowcount != 1:
                return None
            row = self.conn.execute(
                "SELECT * FROM command_logs WHERE id = ?", (log_id,)
            ).fetchone()
        return _command_from_row(row)

    async def command_history(
        self, door_id: int | None = None, limit: int = 100
    ) -> list[dict[str, Any]]:
        where = "WHERE l.door_id = ?" if door_id is not None else ""
        params: tuple[Any, ...] = (door_id, limit) if door_id is not None else (limit,)
        async with self.lock:
            rows = self.conn.execute(f"""
                SELECT l.id, l.door_id, d.floor, d.room_no, l.action,
                       l.requested_at, l.ack_at, l.latency_ms
                  FROM command_logs l
                  JOIN doors d ON d.id = l.door_id
                  {where}
                 ORDER BY l.requested_at DESC, l.id DESC
                 LIMIT ?
            """, params).fetchall()
        out = []
        for r in rows:
            item = dict(r)
            item["requested_at"] = iso_from_epoch(item["requested_at"])
            item["ack_at"] = iso_from_epoch(item["ack_at"])
            out.append(item)
        return out

    # ------------------------------------------------------------------
    # Heartbeats
    # ------------------------------------------------------------------

    async def record_heartbeat(self, door_id: int, ping_at: float) -> int:
        async with self.lock:
            cur = self._write(
                "INSERT INTO ping_logs (door_id, ping_at) VALUES (?, ?)",
                (door_id, ping_at),
            )
            return int(cur.lastrowid)

    async def last_heartbeats(self) -> list[dict[str, Any]]:
        """One row per door with the newest ping (None if never seen)."""
        async with self.lock:
            rows = self.conn.execute("""
                SELECT d.id AS door_id, d.floor, d.room_no, c.mac,
                       MAX(pl.ping_at) AS last_ping_at
                  FROM doors d
                  LEFT JOIN devices c ON c.id = d.device_id
                  LEFT JOIN ping_logs pl ON pl.door_id = d.id
                 GROUP BY d.id
                 ORDER BY d.floor, d.room_no
            """).fetchall()
        return [dict(r) for r in rows]

    async def heartbeats_since(self, since: float) -> list[dict[str, Any]]:
        """Every door, joined with its pings at/after `since` (ping_at None if none)."""
        async with self.lock:
            rows = self.conn.execute("""
                SELECT d.id AS door_id, d.floor, d.room_no, c.mac, pl.ping_at
                  FROM doors d
                  LEFT JOIN devices c ON c.id = d.device_id
                  LEFT JOIN ping_logs pl
                    ON pl.door_id = d.id
                   AND pl.ping_at >= ?
                 ORDER BY d.id, pl.ping_at
            """, (since,)).fetchall()
        return [dict(r) for r in rows]

    async def heartbeat_counts(self, now: float) -> list[dict[str, Any]]:
        """Ping counts per door over the configured day windows."""
        cases = []
        params: list[Any] = []
        for column, days in PING_COUNT_WINDOWS.items():
            cases.append(
                f"COUNT(CASE WHEN pl.ping_at >= ? THEN 1 END) AS {column}"
            )
            params.append(now - days * 86400)
        async with self.lock:
            rows = self.conn.execute(f"""
                SELECT d.id AS door_id, d.floor, d.room_no, c.device_no, c.mac,
                       {", ".join(cases)}
                  FROM doors d
                  LEFT JOIN devices c ON c.id = d.device_id
                  LEFT JOIN ping_logs pl ON pl.door_id = d.id
                 GROUP BY d.id
                 ORDER BY d.floor, d.room_no
            """, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def upsert_schedule(
        self,
        *,
        door_id: int,
        schedule_date: str,
        open_time: str,
        close_time: str,
        enabled: bool = True,
        now: float,
    ) -> ScheduleWindow:
        """Insert or replace the window for (door, date); re-arms both markers."""
        async with self.lock:
            self._write("""
                INSERT INTO schedules
                    (door_id, schedule_date, open_time, close_time, enabled, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (door_id, schedule_date)
                DO UPDATE SET open_time = excluded.open_time,
                              close_time = excluded.close_time,
                              enabled = excluded.enabled,
                              open_sent_at = NULL,
                              close_sent_at = NULL,
                              updated_at = excluded.updated_at
            """, (door_id, schedule_date, open_time, close_time, int(enabled), now))
            row = self.conn.execute(
                _SCHEDULE_SELECT + " WHERE s.door_id = ? AND s.schedule_date = ?",
                (door_id, schedule_date),
            ).fetchone()
        return _schedule_from_row(row)

    async def get_schedule(self, schedule_id: int) -> ScheduleWindow | None:
        async with self.lock:
            row = self.conn.execute(
                _SCHEDULE_SELECT + " WHERE s.id = ?", (schedule_id,)
            ).fetchone()
        return _schedule_from_row(row) if row else None

    async def list_schedules(self, schedule_date: str | None = None) -> list[ScheduleWindow]:
        async with self.lock:
            if schedule_date:
                rows = self.conn.execute(
                    _SCHEDULE_SELECT
                    + " WHERE s.schedule_date = ?"
                    " ORDER BY d.floor, d.room_no, s.open_time",
                    (schedule_date,),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    _SCHEDULE_SELECT
                    + " ORDER BY s.schedule_date DESC, d.floor, d.room_no, s.open_time"
                    " LIMIT 300"
                ).fetchall()
        return [_schedule_from_row(r) for r in rows]

    async def delete_schedule(self, schedule_id: int) -> bool:
        async with self.lock:
            cur = self._write("DELETE FROM schedules WHERE id = ?", (schedule_id,))
            return cur.rowcount > 0

    async def enabled_schedules_for(self, schedule_date: str) -> list[ScheduleWindow]:
        async with self.lock:
            rows = self.conn.execute(
                _SCHEDULE_SELECT
                + " WHERE s.enabled = 1 AND s.schedule_date = ? ORDER BY s.id",
                (schedule_date,),
            ).fetchall()
        return [_schedule_from_row(r) for r in rows]

    async def mark_schedule_sent(self, schedule_id: int, boundary: str, at: float) -> bool:
        """Set open_sent_at/close_sent_at if still unset. False if already set."""
        column = _SENT_COLUMNS[boundary]
        async with self.lock:
            cur = self._write(
                f"UPDATE schedules SET {column} = ?, updated_at = ?"
                f" WHERE id = ? AND {column} IS NULL",
                (at, at, schedule_id),
            )
            return cur.rowcount == 1
