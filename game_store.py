"""Game store wrapper for a hosted REST backend or local SQLite fallback.

Both backends expose the same collection API (select / insert / update /
delete) and publish every write they make to an in-process change feed so
engines can react with invalidate-and-refetch.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urljoin

import requests

import phase_formats
from api_errors import GatewayError

logger = logging.getLogger(__name__)


TABLE_SCHEMAS: dict[str, dict] = {
    "game_sessions": {
        "columns": {
            "id": "TEXT PRIMARY KEY",
            "is_active": "INTEGER NOT NULL DEFAULT 0",
            "theme": "TEXT NOT NULL DEFAULT 'classic'",
            "difficulty": "TEXT NOT NULL DEFAULT 'medium'",
            "timer_seconds": "INTEGER NOT NULL DEFAULT 600",
            "timer_started_at": "REAL",
            "double_points_active": "INTEGER NOT NULL DEFAULT 0",
            "current_hint": "TEXT",
            "game_ended_at": "REAL",
            "quote_count": "INTEGER",
            "created_at": "REAL NOT NULL",
            "updated_at": "REAL NOT NULL",
        },
        "created": "created_at",
        "timestamps": ("timer_started_at", "game_ended_at", "created_at", "updated_at"),
        "json": (),
        "bool": ("is_active", "double_points_active"),
        "constraints": (),
    },
    "active_players": {
        "columns": {
            "id": "TEXT PRIMARY KEY",
            "session_id": "TEXT NOT NULL",
            "player_name": "TEXT NOT NULL",
            "score": "INTEGER NOT NULL DEFAULT 0",
            "streak": "INTEGER NOT NULL DEFAULT 0",
            "wrong_attempts": "INTEGER NOT NULL DEFAULT 0",
            "placements": "TEXT NOT NULL DEFAULT '{}'",
            "is_completed": "INTEGER NOT NULL DEFAULT 0",
            "avatar_type": "TEXT NOT NULL DEFAULT 'initial'",
            "avatar_value": "TEXT",
            "joined_at": "REAL NOT NULL",
            "updated_at": "REAL NOT NULL",
        },
        "created": "joined_at",
        "timestamps": ("joined_at", "updated_at"),
        "json": ("placements",),
        "bool": ("is_completed",),
        "constraints": ("UNIQUE (session_id, player_name)",),
    },
    "custom_quotes": {
        "columns": {
            "id": "TEXT PRIMARY KEY",
            "theme": "TEXT NOT NULL DEFAULT 'classic'",
            "phase": "TEXT NOT NULL",
            "text": "TEXT NOT NULL",
            "author": "TEXT NOT NULL DEFAULT ''",
            "is_active": "INTEGER NOT NULL DEFAULT 1",
            "created_at": "REAL NOT NULL",
        },
        "created": "created_at",
        "timestamps": ("created_at",),
        "json": (),
        "bool": ("is_active",),
        "constraints": (),
    },
    "leaderboard": {
        "columns": {
            "id": "TEXT PRIMARY KEY",
            "session_id": "TEXT",
            "player_name": "TEXT NOT NULL",
            "score": "INTEGER NOT NULL DEFAULT 0",
            "time_ms": "INTEGER NOT NULL DEFAULT 0",
            "theme": "TEXT NOT NULL DEFAULT 'classic'",
            "created_at": "REAL NOT NULL",
        },
        "created": "created_at",
        "timestamps": ("created_at",),
        "json": (),
        "bool": (),
        "constraints": (),
    },
    "saved_leaderboards": {
        "columns": {
            "id": "TEXT PRIMARY KEY",
            "session_id": "TEXT",
            "game_name": "TEXT NOT NULL",
            "saved_at": "REAL NOT NULL",
            "players": "TEXT NOT NULL DEFAULT '[]'",
            "winner_name": "TEXT",
            "winner_score": "INTEGER",
        },
        "created": "saved_at",
        "timestamps": ("saved_at",),
        "json": ("players",),
        "bool": (),
        "constraints": (),
    },
}


@dataclass(frozen=True)
class ChangeEvent:
    event_type: str  # insert | update | delete
    collection: str
    new_row: Optional[dict]
    old_row: Optional[dict] = None

    @property
    def row(self) -> dict:
        return self.new_row or self.old_row or {}


class Subscription:
    def __init__(self, feed: "ChangeFeed", collection: str, filters: dict, callback):
        self._feed = feed
        self.collection = collection
        self.filters = dict(filters or {})
        self.callback = callback
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if event.collection != self.collection:
            return False
        row = event.row
        return all(row.get(key) == value for key, value in self.filters.items())

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed.remove(self)


class ChangeFeed:
    """In-process fan-out of store writes to subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        collection: str,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[dict] = None,
    ) -> Subscription:
        subscription = Subscription(self, collection, filters or {}, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(
                    "Change feed subscriber failed for %s %s",
                    event.event_type,
                    event.collection,
                )


class BaseGameStore:
    """Shared row handling for both store backends."""

    def __init__(self, *, feed: Optional[ChangeFeed] = None, clock=time.time):
        self.feed = feed or ChangeFeed()
        self.clock = clock

    @property
    def is_remote(self) -> bool:
        return False

    def subscribe(
        self,
        collection: str,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[dict] = None,
    ) -> Subscription:
        self._schema(collection)
        return self.feed.subscribe(collection, callback, filters)

    def fetch_current_session(self) -> Optional[dict]:
        rows = self.select("game_sessions", order="created_at", descending=True, limit=1)
        return rows[0] if rows else None

    def fetch_active_quotes(self, theme: str = phase_formats.THEME) -> list[dict]:
        return self.select("custom_quotes", {"theme": theme, "is_active": True})

    # ------------------------
    # Row helpers
    # ------------------------

    @staticmethod
    def _schema(collection: str) -> dict:
        schema = TABLE_SCHEMAS.get(collection)
        if schema is None:
            raise GatewayError(f"Unknown collection: {collection}", 400)
        return schema

    def _check_columns(self, collection: str, columns) -> None:
        known = self._schema(collection)["columns"]
        unknown = [c for c in columns if c not in known]
        if unknown:
            raise GatewayError(
                f"Unknown column(s) for {collection}: {', '.join(sorted(unknown))}", 400
            )

    def _prepare_insert(self, collection: str, row: dict) -> dict:
        self._check_columns(collection, row.keys())
        schema = self._schema(collection)
        now = self.clock()
        prepared = dict(row)
        prepared.setdefault("id", uuid.uuid4().hex)
        prepared.setdefault(schema["created"], now)
        if "updated_at" in schema["columns"]:
            prepared.setdefault("updated_at", now)
        return prepared

    def _prepare_patch(self, collection: str, patch: dict) -> dict:
        self._check_columns(collection, patch.keys())
        prepared = dict(patch)
        if "updated_at" in self._schema(collection)["columns"]:
            prepared["updated_at"] = self.clock()
        return prepared

    def _publish(self, event_type: str, collection: str, new_row, old_row=None) -> None:
        self.feed.publish(
            ChangeEvent(
                event_type=event_type,
                collection=collection,
                new_row=new_row,
                old_row=old_row,
            )
        )


class LocalGameStore(BaseGameStore):
    def __init__(
        self,
        db_path: str = "elephant.db",
        *,
        feed: Optional[ChangeFeed] = None,
        clock=time.time,
        seed_quotes: bool = True,
    ):
        super().__init__(feed=feed, clock=clock)
        self.db_path = str(db_path)
        self._ensure_schema()
        if seed_quotes:
            self._maybe_seed_quotes()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        with self._connect() as conn:
            for collection, schema in TABLE_SCHEMAS.items():
                parts = [f"{name} {ddl}" for name, ddl in schema["columns"].items()]
                parts.extend(schema["constraints"])
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {collection} ({', '.join(parts)})"
                )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_players_session ON active_players (session_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_created ON game_sessions (created_at)"
            )

    def _maybe_seed_quotes(self) -> None:
        with self._connect() as conn:
            existing = conn.execute("SELECT COUNT(*) FROM custom_quotes").fetchone()[0]
        if existing:
            return
        for phase, text, author in phase_formats.DEFAULT_QUOTES:
            self.insert(
                "custom_quotes",
                {
                    "theme": phase_formats.THEME,
                    "phase": phase.value,
                    "text": text,
                    "author": author,
                    "is_active": True,
                },
            )
        logger.info("Seeded %s default quotes.", len(phase_formats.DEFAULT_QUOTES))

    def _encode(self, collection: str, row: dict) -> dict:
        schema = self._schema(collection)
        encoded = {}
        for key, value in row.items():
            if key in schema["json"]:
                encoded[key] = json.dumps(value if value is not None else None)
            elif key in schema["bool"] and value is not None:
                encoded[key] = 1 if value else 0
            else:
                encoded[key] = value
        return encoded

    def _decode(self, collection: str, row: sqlite3.Row) -> dict:
        schema = self._schema(collection)
        decoded = dict(row)
        for key in schema["json"]:
            raw = decoded.get(key)
            try:
                decoded[key] = json.loads(raw) if raw else None
            except (json.JSONDecodeError, TypeError):
                decoded[key] = None
        for key in schema["bool"]:
            if key in decoded:
                decoded[key] = bool(decoded[key])
        return decoded

    def _where(self, collection: str, filters: Optional[dict]) -> tuple[str, list]:
        if not filters:
            return "", []
        self._check_columns(collection, filters.keys())
        encoded = self._encode(collection, filters)
        clauses = []
        params = []
        for key, value in encoded.items():
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def select(
        self,
        collection: str,
        filters: Optional[dict] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        where, params = self._where(collection, filters)
        sql = f"SELECT * FROM {collection}{where}"
        if order:
            self._check_columns(collection, [order])
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {order} {direction}, rowid {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to read {collection}: {exc}") from exc
        return [self._decode(collection, row) for row in rows]

    def insert(self, collection: str, row: dict) -> dict:
        prepared = self._encode(collection, self._prepare_insert(collection, row))
        columns = list(prepared.keys())
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                    [prepared[c] for c in columns],
                )
                stored = conn.execute(
                    f"SELECT * FROM {collection} WHERE id = ?", (prepared["id"],)
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise GatewayError(f"Duplicate row for {collection}.", 409) from exc
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to insert into {collection}: {exc}") from exc

        new_row = self._decode(collection, stored)
        self._publish("insert", collection, new_row)
        return new_row

    def update(self, collection: str, filters: dict, patch: dict) -> None:
        prepared = self._encode(collection, self._prepare_patch(collection, patch))
        where, params = self._where(collection, filters)
        assignments = ", ".join(f"{key} = ?" for key in prepared)
        try:
            with self._connect() as conn:
                old_rows = conn.execute(f"SELECT * FROM {collection}{where}", params).fetchall()
                conn.execute(
                    f"UPDATE {collection} SET {assignments}{where}",
                    list(prepared.values()) + params,
                )
                ids = [row["id"] for row in old_rows]
                new_rows = [
                    conn.execute(f"SELECT * FROM {collection} WHERE id = ?", (row_id,)).fetchone()
                    for row_id in ids
                ]
        except sqlite3.IntegrityError as exc:
            raise GatewayError(f"Conflicting update for {collection}.", 409) from exc
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to update {collection}: {exc}") from exc

        for old_row, new_row in zip(old_rows, new_rows):
            if new_row is None:
                continue
            self._publish(
                "update",
                collection,
                self._decode(collection, new_row),
                self._decode(collection, old_row),
            )

    def delete(self, collection: str, filters: dict) -> None:
        where, params = self._where(collection, filters)
        try:
            with self._connect() as conn:
                old_rows = conn.execute(f"SELECT * FROM {collection}{where}", params).fetchall()
                conn.execute(f"DELETE FROM {collection}{where}", params)
        except sqlite3.Error as exc:
            raise GatewayError(f"Failed to delete from {collection}: {exc}") from exc

        for old_row in old_rows:
            self._publish("delete", collection, None, self._decode(collection, old_row))


class RemoteGameStore(BaseGameStore):
    """PostgREST-style hosted backend (``/rest/v1/<table>``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        feed: Optional[ChangeFeed] = None,
        clock=time.time,
        timeout: float = 10,
    ):
        super().__init__(feed=feed, clock=clock)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @property
    def is_remote(self) -> bool:
        return True

    def select(
        self,
        collection: str,
        filters: Optional[dict] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = self._filter_params(collection, filters)
        params["select"] = "*"
        if order:
            self._check_columns(collection, [order])
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = int(limit)
        payload = self._request("GET", collection, params=params)
        return [self._from_wire(collection, row) for row in payload or []]

    def insert(self, collection: str, row: dict) -> dict:
        prepared = self._prepare_insert(collection, row)
        payload = self._request("POST", collection, json_body=self._to_wire(collection, prepared))
        rows = [self._from_wire(collection, item) for item in payload or []]
        new_row = rows[0] if rows else prepared
        self._publish("insert", collection, new_row)
        return new_row

    def update(self, collection: str, filters: dict, patch: dict) -> None:
        prepared = self._prepare_patch(collection, patch)
        params = self._filter_params(collection, filters)
        payload = self._request(
            "PATCH", collection, params=params, json_body=self._to_wire(collection, prepared)
        )
        for new_row in payload or []:
            self._publish("update", collection, self._from_wire(collection, new_row))

    def delete(self, collection: str, filters: dict) -> None:
        params = self._filter_params(collection, filters)
        payload = self._request("DELETE", collection, params=params)
        for old_row in payload or []:
            self._publish("delete", collection, None, self._from_wire(collection, old_row))

    def _filter_params(self, collection: str, filters: Optional[dict]) -> dict:
        self._schema(collection)
        if not filters:
            return {}
        self._check_columns(collection, filters.keys())
        timestamps = self._schema(collection)["timestamps"]
        params = {}
        for key, value in filters.items():
            if value is None:
                params[key] = "is.null"
            elif isinstance(value, bool):
                params[key] = f"eq.{'true' if value else 'false'}"
            elif key in timestamps:
                params[key] = f"eq.{phase_formats.format_timestamp(value)}"
            else:
                params[key] = f"eq.{value}"
        return params

    def _to_wire(self, collection: str, row: dict) -> dict:
        wired = dict(row)
        for key in self._schema(collection)["timestamps"]:
            if isinstance(wired.get(key), (int, float)):
                wired[key] = phase_formats.format_timestamp(wired[key])
        return wired

    def _from_wire(self, collection: str, row: dict) -> dict:
        decoded = dict(row)
        for key in self._schema(collection)["timestamps"]:
            if key not in decoded:
                continue
            try:
                decoded[key] = phase_formats.parse_timestamp(decoded[key])
            except (TypeError, ValueError) as exc:
                raise GatewayError(
                    f"Game store returned an invalid {key} for {collection}: {decoded[key]!r}"
                ) from exc
        return decoded

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, collection: str, params=None, json_body=None):
        url = self._url(collection)
        logger.info("Game store request: %s %s", method, url)
        try:
            response = requests.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Game store unreachable: {exc}") from exc

        if response.status_code == 409:
            raise GatewayError(f"Duplicate row for {collection}.", 409)
        if response.status_code >= 400:
            raise GatewayError(
                f"Game store rejected {method} {collection} (HTTP {response.status_code})."
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _url(self, collection: str) -> str:
        return urljoin(self.base_url + "/", f"rest/v1/{collection}")


def get_game_store() -> BaseGameStore:
    standalone = os.getenv("APP_STANDALONE", "false").strip().lower() in {
        "1",
        "true",
        "yes",
        "y",
    }
    api_url = os.getenv("GAME_API_URL")
    api_key = os.getenv("GAME_API_KEY", "")
    db_path = os.getenv("GAME_DB", "elephant.db")

    if standalone:
        api_url = None

    if api_url:
        store = RemoteGameStore(api_url, api_key)
        logger.info("Game store: using hosted API at %s", store.base_url)
        return store

    logger.info("Game store: using local SQLite database (%s)", db_path)
    return LocalGameStore(db_path)
