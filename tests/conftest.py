"""Shared fixtures: an in-memory stand-in for the Supabase REST client."""

from __future__ import annotations

import itertools
import re
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest

from riskintel.db import SupabaseError
from riskintel.utils import parse_iso_datetime

_QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')


def _coerce(left: Any, right: str) -> tuple[Any, Any]:
    try:
        return float(left), float(right)
    except (TypeError, ValueError):
        pass
    left_dt, right_dt = parse_iso_datetime(left), parse_iso_datetime(right)
    if left_dt is not None and right_dt is not None:
        return left_dt, right_dt
    return str(left), right


def _match_value(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, str):
        return actual == expected
    if expected.startswith("in.("):
        members = [re.sub(r"\\(.)", r"\1", m) for m in _QUOTED_RE.findall(expected)]
        return str(actual) in members
    if expected == "is.null":
        return actual is None
    for prefix, compare in (
        ("lt.", lambda a, b: a < b),
        ("lte.", lambda a, b: a <= b),
        ("gt.", lambda a, b: a > b),
        ("gte.", lambda a, b: a >= b),
    ):
        if expected.startswith(prefix):
            if actual is None:
                return False
            left, right = _coerce(actual, expected[len(prefix):])
            return compare(left, right)
    if expected.startswith("eq."):
        expected = expected[3:]
    return str(actual) == expected


def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(_match_value(row.get(key), value) for key, value in filters.items() if value is not None)


def _matches_or(row: Dict[str, Any], extra: Optional[Dict[str, str]]) -> bool:
    clause = (extra or {}).get("or")
    if not clause:
        return True
    for part in clause.strip("()").split(","):
        column, _, condition = part.partition(".")
        if _match_value(row.get(column), condition):
            return True
    return False


class FakeSupabase:
    """Implements the SupabaseClient surface the repositories use, backed by dict rows."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.users: Dict[str, Dict[str, Any]] = {}
        self.failing: set[str] = set()
        self.calls: List[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def _enter(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if table in self.failing or f"{op}:{table}" in self.failing:
            raise SupabaseError(f"simulated {op} failure on {table}")

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        for row in rows:
            data = dict(row)
            data.setdefault("id", str(next(self._ids)))
            self.tables[table].append(data)

    def _find(self, table: str, row: Dict[str, Any], on_conflict: str) -> Optional[Dict[str, Any]]:
        keys = [key.strip() for key in on_conflict.split(",")]
        for existing in self.tables[table]:
            if all(existing.get(key) == row.get(key) for key in keys):
                return existing
        return None

    async def select(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        self._enter("select", table)
        rows = [
            row for row in self.tables[table]
            if _matches(row, filters or {}) and _matches_or(row, extra_params)
        ]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: str(row.get(column) or ""), reverse=direction == "desc")
        if limit is not None:
            rows = rows[: int(limit)]
        return [dict(row) for row in rows]

    async def select_one(self, table: str, *, filters: Dict[str, Any], columns: str = "*", order: Optional[str] = None):
        rows = await self.select(table, filters=filters, columns=columns, order=order, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, payload: Dict[str, Any]):
        rows = await self.insert_many(table, [payload])
        return rows[0] if rows else None

    async def insert_many(
        self,
        table: str,
        payloads: List[Dict[str, Any]],
        *,
        on_conflict: Optional[str] = None,
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        self._enter("insert", table)
        inserted = []
        for payload in payloads:
            if on_conflict and self._find(table, payload, on_conflict) is not None:
                if ignore_duplicates:
                    continue
                raise SupabaseError(f"duplicate key on {table}")
            row = dict(payload)
            row.setdefault("id", str(next(self._ids)))
            self.tables[table].append(row)
            inserted.append(dict(row))
        return inserted

    async def upsert(self, table: str, payload: Dict[str, Any], *, on_conflict: str):
        self._enter("upsert", table)
        existing = self._find(table, payload, on_conflict)
        if existing is not None:
            existing.update(payload)
            return dict(existing)
        row = dict(payload)
        row.setdefault("id", str(next(self._ids)))
        self.tables[table].append(row)
        return dict(row)

    async def update(self, table: str, values: Dict[str, Any], *, filters: Dict[str, Any]):
        self._enter("update", table)
        updated = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def get_auth_user(self, access_token: str):
        self._enter("auth", "users")
        return self.users.get(access_token)


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()
