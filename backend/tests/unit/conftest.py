"""
Conftest for unit tests with an in-memory Supabase client.

All tests in this directory are automatically marked as unit tests.
"""
import re
import threading
from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from main import app


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


# ============== In-memory PostgREST ==============

ACTIVE = {"open", "pending", "accepted"}

# table -> [(columns, predicate deciding whether a row is covered by the index)]
UNIQUE_INDEXES = {
    "transactions": [(("buyer_id", "seller_id"), lambda row: row.get("status") in ACTIVE)],
    "transaction_items": [(("transaction_id", "user_card_id"), None)],
    "user_cards": [(("card_id", "user_id", "condition", "foil", "language"), None)],
    "conversations": [(("transaction_id",), None)],
}

TABLE_DEFAULTS = {
    "transactions": {
        "status": "open",
        "total_amount": None,
        "cancelled_by": None,
        "cancellation_reason": None,
        "notes": None,
    },
    "transaction_items": {"quantity": 1},
    "user_cards": {
        "quantity": 1,
        "condition": "near_mint",
        "foil": False,
        "language": "english",
        "is_for_sale": False,
        "sale_price": None,
    },
    "messages": {"is_read": False},
}


def _key(value):
    return None if value is None else str(value)


def _like_to_regex(pattern: str) -> re.Pattern:
    out, i = [], 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        out.append(".*" if ch == "%" else "." if ch == "_" else re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Subset of the postgrest query builder used by the services."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.action = "select"
        self.payload = None
        self.filters = []
        self.limit_to = None
        self.order_by = None

    def select(self, *columns, **kwargs):
        self.action = "select"
        return self

    def insert(self, payload, **kwargs):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload, **kwargs):
        self.action = "update"
        self.payload = payload
        return self

    def delete(self, **kwargs):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: _key(row.get(column)) == _key(value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: _key(row.get(column)) != _key(value))
        return self

    def in_(self, column, values):
        wanted = {_key(v) for v in values}
        self.filters.append(lambda row: _key(row.get(column)) in wanted)
        return self

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        self.filters.append(lambda row: regex.match(str(row.get(column) or "")) is not None)
        return self

    def limit(self, count, **kwargs):
        self.limit_to = count
        return self

    def order(self, column, desc=False, **kwargs):
        self.order_by = (column, desc)
        return self

    def matches(self, row):
        return all(check(row) for check in self.filters)

    def execute(self):
        return self.db.run(self)


class FakeRpc:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        return self.db.call(self.name, self.params)


class FakeSupabase:
    """Thread-safe in-memory stand-in for the Supabase client.

    Enforces the unique indexes of the real schema (raising APIError 23505)
    and implements the increment_card_quantity function.
    """

    def __init__(self):
        self.tables = defaultdict(list)
        self.failures = []
        self.log = []
        self._lock = threading.RLock()

    # ---- client surface ----

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params or {})

    # ---- test helpers ----

    def seed(self, table, *rows):
        with self._lock:
            stored = []
            for row in rows:
                record = self._new_row(table, row)
                self.tables[table].append(record)
                stored.append(dict(record))
            return stored

    def rows(self, table, **where):
        with self._lock:
            return [
                dict(row) for row in self.tables[table]
                if all(_key(row.get(k)) == _key(v) for k, v in where.items())
            ]

    def fail(self, table, action, code="XX000", message="simulated failure", times=1, exc=None):
        """Make the next `times` matching operations raise APIError, or `exc` when given."""
        self.failures.append({
            "table": table, "action": action, "code": code, "message": message, "times": times, "exc": exc,
        })

    # ---- execution ----

    def _maybe_fail(self, table, action):
        for failure in self.failures:
            if failure["table"] == table and failure["action"] == action and failure["times"] > 0:
                failure["times"] -= 1
                if failure["exc"] is not None:
                    raise failure["exc"]
                raise APIError({"message": failure["message"], "code": failure["code"], "details": "", "hint": ""})

    def _new_row(self, table, payload):
        now = datetime.now(timezone.utc).isoformat()
        record = {"id": str(uuid4()), **TABLE_DEFAULTS.get(table, {})}
        if table in ("transactions", "conversations", "messages"):
            record["created_at"] = now
        if table == "transactions":
            record["updated_at"] = now
        record.update(payload)
        return record

    def _check_unique(self, table, candidate, existing):
        for columns, covers in UNIQUE_INDEXES.get(table, []):
            if covers is not None and not covers(candidate):
                continue
            key = tuple(_key(candidate.get(c)) for c in columns)
            for row in existing:
                if row is candidate or (covers is not None and not covers(row)):
                    continue
                if tuple(_key(row.get(c)) for c in columns) == key:
                    raise APIError({
                        "message": f'duplicate key value violates unique constraint on "{table}"',
                        "code": "23505",
                        "details": f"Key {columns}={key} already exists.",
                        "hint": "",
                    })

    def run(self, query):
        with self._lock:
            self.log.append((query.table, query.action))
            self._maybe_fail(query.table, query.action)
            table = self.tables[query.table]

            if query.action == "insert":
                payloads = query.payload if isinstance(query.payload, list) else [query.payload]
                inserted = []
                for payload in payloads:
                    record = self._new_row(query.table, payload)
                    self._check_unique(query.table, record, table + inserted)
                    inserted.append(record)
                table.extend(inserted)
                return FakeResponse([dict(r) for r in inserted])

            matched = [row for row in table if query.matches(row)]

            if query.action == "select":
                if query.order_by:
                    column, desc = query.order_by
                    matched.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
                if query.limit_to is not None:
                    matched = matched[:query.limit_to]
                return FakeResponse([dict(r) for r in matched])

            if query.action == "update":
                for row in matched:
                    row.update(query.payload)
                return FakeResponse([dict(r) for r in matched])

            if query.action == "delete":
                self.tables[query.table] = [row for row in table if row not in matched]
                return FakeResponse([dict(r) for r in matched])

            raise AssertionError(f"unsupported action {query.action}")

    def call(self, name, params):
        with self._lock:
            self.log.append((name, "rpc"))
            self._maybe_fail(name, "rpc")
            if name != "increment_card_quantity":
                raise APIError({"message": f"function {name} does not exist", "code": "42883", "details": "", "hint": ""})
            for row in self.tables["user_cards"]:
                if (
                    _key(row["card_id"]) == _key(params["p_card_id"])
                    and _key(row["user_id"]) == _key(params["p_user_id"])
                    and row["condition"] == params["p_condition"]
                    and row["foil"] == params["p_foil"]
                    and row["language"] == params["p_language"]
                ):
                    row["quantity"] += params["p_quantity_to_add"]
                    return FakeResponse(row["quantity"])
            return FakeResponse(None)


# ============== Fixtures ==============

@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture(autouse=True)
def mock_supabase_client(fake_supabase):
    """Automatically swap the app's Supabase client for the in-memory one."""
    with patch("main.supabase", fake_supabase):
        yield fake_supabase


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def buyer_id():
    return "0b7c3a6e-5d2f-4e1a-8c9b-1f2e3d4c5b6a"


@pytest.fixture
def seller_id():
    return "5e8f1a2b-3c4d-4e5f-9a6b-7c8d9e0f1a2b"


@pytest.fixture
def other_user_id():
    return "9a0b1c2d-3e4f-4a5b-8c6d-7e8f9a0b1c2d"


@pytest.fixture
def catalog_card(fake_supabase):
    """A catalog entry: Lightning Bolt from M10."""
    return fake_supabase.seed("default_cards", {
        "id": "catalog_bolt",
        "name": "Lightning Bolt",
        "set": "m10",
        "set_name": "Magic 2010",
    })[0]


@pytest.fixture
def make_listing(fake_supabase, seller_id, catalog_card):
    """Factory seeding a for-sale owned card belonging to the seller."""
    def _make(price="10.00", owner=None, condition="near_mint", **extra):
        return fake_supabase.seed("user_cards", {
            "user_id": owner or seller_id,
            "card_id": catalog_card["id"],
            "condition": condition,
            "language": extra.pop("language", f"lang_{uuid4().hex[:6]}"),
            "is_for_sale": True,
            "sale_price": price,
            "quantity": 1,
            **extra,
        })[0]
    return _make


@pytest.fixture
def listing(make_listing):
    return make_listing()


@pytest.fixture
def seed_transaction(fake_supabase, buyer_id, seller_id):
    """Factory seeding a transaction (and optional items) in a given status."""
    def _seed(status="open", items=(), **extra):
        transaction = fake_supabase.seed("transactions", {
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "status": status,
            **extra,
        })[0]
        for item in items:
            fake_supabase.seed("transaction_items", {
                "transaction_id": transaction["id"],
                "quantity": 1,
                "condition": "near_mint",
                **item,
            })
        return transaction
    return _seed


@pytest.fixture
def as_user():
    """Build the identity header for a user."""
    return lambda user_id: {"X-User-Id": user_id}
