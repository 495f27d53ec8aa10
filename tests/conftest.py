"""
Pytest configuration and fixtures for Mise tests.

Supabase is replaced by FakeSupabase, an in-memory stand-in for the
postgrest query builder installed into the client singletons. OpenAI calls
are patched per test with unittest.mock.
"""

import os
import re
import threading
import uuid
from collections import Counter
from typing import Any

import pytest

# Set test environment before importing mise modules
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-test")
os.environ["MISE_ENV"] = "development"

import mise.db.client as db_client  # noqa: E402
from mise.reference.tables import clear_reference_caches  # noqa: E402


# =============================================================================
# Fake Supabase
# =============================================================================


class FakeResponse:
    def __init__(self, data: Any, count: int | None = None):
        self.data = data
        self.count = count


def _ilike(value: Any, pattern: str) -> bool:
    regex = ".*".join(re.escape(part) for part in pattern.split("%"))
    return re.fullmatch(regex, str(value or ""), re.IGNORECASE | re.DOTALL) is not None


class FakeQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._mode = "select"
        self._filters: list = []
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None
        self._single: str | None = None
        self._payload: list[dict] = []
        self._on_conflict: list[str] = []
        self._ignore_duplicates = False

    # -- builders ------------------------------------------------------------

    def select(self, columns: str = "*", count: str | None = None) -> "FakeQuery":
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: list) -> "FakeQuery":
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) <= value)
        return self

    def or_(self, expression: str) -> "FakeQuery":
        clauses = []
        for clause in expression.split(","):
            column, op, value = clause.split(".", 2)
            clauses.append((column, op, value))

        def matches(row: dict) -> bool:
            for column, op, value in clauses:
                if op == "ilike" and _ilike(row.get(column), value):
                    return True
                if op == "eq" and str(row.get(column)) == value:
                    return True
            return False

        self._filters.append(matches)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def maybe_single(self) -> "FakeQuery":
        self._single = "maybe"
        return self

    def single(self) -> "FakeQuery":
        self._single = "single"
        return self

    def insert(self, rows: dict | list[dict]) -> "FakeQuery":
        self._mode = "insert"
        self._payload = rows if isinstance(rows, list) else [rows]
        return self

    def update(self, values: dict) -> "FakeQuery":
        self._mode = "update"
        self._payload = [values]
        return self

    def upsert(
        self,
        rows: dict | list[dict],
        on_conflict: str = "",
        ignore_duplicates: bool = False,
    ) -> "FakeQuery":
        self._mode = "upsert"
        self._payload = rows if isinstance(rows, list) else [rows]
        self._on_conflict = [c.strip() for c in on_conflict.split(",") if c.strip()]
        self._ignore_duplicates = ignore_duplicates
        return self

    # -- execution -----------------------------------------------------------

    def execute(self) -> FakeResponse | None:
        with self._db.lock:
            self._db.calls.append((self._table, self._mode))
            if self._table in self._db.failing:
                raise RuntimeError(f"{self._table} unavailable")

            rows = self._db.tables.setdefault(self._table, [])
            if self._mode == "insert":
                return FakeResponse(self._insert(rows))
            if self._mode == "upsert":
                return FakeResponse(self._upsert(rows))
            if self._mode == "update":
                return FakeResponse(self._update(rows))

            self._db.fetches[self._table] += 1
            matched = [dict(row) for row in rows if all(f(row) for f in self._filters)]

        if self._order:
            column, desc = self._order
            matched.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        count = len(matched)
        if self._limit is not None:
            matched = matched[: self._limit]

        if self._single == "maybe":
            return FakeResponse(matched[0]) if matched else None
        if self._single == "single":
            if len(matched) != 1:
                raise RuntimeError("JSON object requested, multiple (or no) rows returned")
            return FakeResponse(matched[0])
        return FakeResponse(matched, count=count)

    def _insert(self, rows: list[dict]) -> list[dict]:
        inserted = []
        for payload in self._payload:
            row = {"id": str(uuid.uuid4()), "created_at": self._db.next_timestamp(), **payload}
            rows.append(row)
            inserted.append(dict(row))
        return inserted

    def _update(self, rows: list[dict]) -> list[dict]:
        updated = []
        for row in rows:
            if all(f(row) for f in self._filters):
                row.update(self._payload[0])
                updated.append(dict(row))
        return updated

    def _upsert(self, rows: list[dict]) -> list[dict]:
        written = []
        for payload in self._payload:
            existing = next(
                (r for r in rows if all(r.get(k) == payload.get(k) for k in self._on_conflict)),
                None,
            ) if self._on_conflict else None

            if existing is not None:
                if self._ignore_duplicates:
                    continue
                existing.update(payload)
                written.append(dict(existing))
            else:
                rows.append(dict(payload))
                written.append(dict(payload))
        return written


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self._db = db
        self._name = name
        self._params = params

    def execute(self) -> FakeResponse:
        self._db.rpc_calls.append((self._name, self._params))
        if self._name in self._db.failing:
            raise RuntimeError(f"{self._name} unavailable")
        return FakeResponse(self._db.rpc_results.get(self._name, []))


class FakeSupabase:
    """In-memory Supabase client: tables are lists of row dicts."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.failing: set[str] = set()
        self.fetches: Counter = Counter()
        self.calls: list[tuple[str, str]] = []
        self.rpc_calls: list[tuple[str, dict]] = []
        self.rpc_results: dict[str, Any] = {}
        self.lock = threading.RLock()
        self._clock = 0

    def next_timestamp(self) -> str:
        self._clock += 1
        return f"2026-01-01T00:00:{self._clock:02d}+00:00"

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict | None = None) -> FakeRpc:
        return FakeRpc(self, name, params or {})

    def seed(self, table: str, rows: list[dict]) -> None:
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)


# =============================================================================
# Reference Data
# =============================================================================

ALIASES = [
    {"canonical": "shrimp", "alias": "prawns", "language": "en"},
    {"canonical": "shrimp", "alias": "camarones", "language": "es"},
    {"canonical": "chicken", "alias": "pollo", "language": "es"},
    {"canonical": "ground_beef", "alias": "ground beef", "language": "en"},
    {"canonical": "ground_beef", "alias": "carne molida", "language": "es"},
    {"canonical": "peanut", "alias": "cacahuate", "language": "es"},
    {"canonical": "milk", "alias": "leche", "language": "es"},
    {"canonical": "egg", "alias": "huevo", "language": "es"},
]

ALLERGEN_GROUPS = [
    {"category": "shellfish", "ingredient_canonical": "shrimp", "name_en": "Shrimp", "name_es": "Camarón"},
    {"category": "shellfish", "ingredient_canonical": "crab", "name_en": "Crab", "name_es": "Cangrejo"},
    {"category": "peanuts", "ingredient_canonical": "peanut", "name_en": "Peanut", "name_es": "Cacahuate"},
    {"category": "dairy", "ingredient_canonical": "milk", "name_en": "Milk", "name_es": "Leche"},
    {"category": "dairy", "ingredient_canonical": "cheese", "name_en": "Cheese", "name_es": "Queso"},
    {"category": "eggs", "ingredient_canonical": "egg", "name_en": "Egg", "name_es": "Huevo"},
]

FOOD_SAFETY_RULES = [
    {"ingredient_canonical": "chicken", "category": "poultry", "min_temp_c": 74, "min_temp_f": 165, "min_cook_min": 20},
    {"ingredient_canonical": "ground_beef", "category": "beef", "min_temp_c": 70, "min_temp_f": 160, "min_cook_min": 15},
    {"ingredient_canonical": "beef", "category": "beef", "min_temp_c": 63, "min_temp_f": 145, "min_cook_min": 10},
]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_db(monkeypatch):
    """Empty FakeSupabase installed as both the anon and service client."""
    db = FakeSupabase()
    monkeypatch.setattr(db_client, "_client", db)
    monkeypatch.setattr(db_client, "_service_client", db)
    clear_reference_caches()
    yield db
    clear_reference_caches()


@pytest.fixture
def reference_db(fake_db):
    """FakeSupabase seeded with aliases, allergen groups and safety rules."""
    fake_db.seed("ingredient_aliases", ALIASES)
    fake_db.seed("allergen_groups", ALLERGEN_GROUPS)
    fake_db.seed("food_safety_rules", FOOD_SAFETY_RULES)
    return fake_db


@pytest.fixture
def user_context():
    """A plain English-speaking user with no restrictions."""
    from mise.context.builders import UserContext

    return UserContext(user_id="00000000-0000-0000-0000-000000000002")
