import copy
import itertools
import re
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from urllib.parse import unquote

import jwt as pyjwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from app.api.deps import get_client_factory
from app.config import get_settings
from app.errors import CredentialExpired
from app.main import app
from app.services.backend_client import BackendClient, BackendError, BoundClient, _format_value

BASE_URL = "https://backend.test"

# (parent, embedded table) -> (cardinality, parent column, embedded column)
RELATIONS = {
    ("jobs", "companies"): ("one", "company_id", "id"),
    ("jobs", "saved_jobs"): ("many", "id", "job_id"),
    ("jobs", "applications"): ("many", "id", "job_id"),
    ("applications", "jobs"): ("one", "job_id", "id"),
    ("applications", "profiles"): ("one", "candidate_id", "id"),
    ("saved_jobs", "jobs"): ("one", "job_id", "id"),
}
UNIQUE = {
    "saved_jobs": [("user_id", "job_id")],
    "applications": [("job_id", "candidate_id")],
}
DEFAULTS = {
    "jobs": {"isOpen": True},
    "applications": {"status": "applied", "experience": 0, "education": "Graduate"},
}
# PostgREST max-rows default: larger reads come back truncated
MAX_ROWS = 1000


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.content = b"" if payload is None else b"{}"

    def json(self):
        return copy.deepcopy(self._payload)


def _split_top_level(columns):
    items, depth, current = [], 0, ""
    for ch in columns:
        if ch == "," and depth == 0:
            items.append(current)
            current = ""
            continue
        depth += ch == "("
        depth -= ch == ")"
        current += ch
    if current:
        items.append(current)
    return items


class FakeBackend:
    """In-memory stand-in for the PostgREST + storage endpoints, served behind the real query builder."""

    def __init__(self):
        self.tables = {name: [] for name in ("companies", "jobs", "saved_jobs", "applications", "profiles")}
        self.objects = defaultdict(dict)
        self.calls = []
        self.expired = set()
        self.failures = []
        self._ids = defaultdict(lambda: itertools.count(1))
        self._clock = itertools.count()
        self.client = BackendClient(BASE_URL, "anon-key")

    # ----- wiring -----

    def factory(self, credential=None):
        return FakeBoundClient(self, credential)

    def fail(self, method, path_prefix, error):
        """Make the next matching request raise ``error``."""
        self.failures.append((method, path_prefix, error))

    def seed(self, table, **row):
        return self._insert(table, row)

    def _now(self):
        return (datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(self._clock))).isoformat()

    # ----- dispatch -----

    def handle(self, method, path, credential, params=None, json=None, headers=None, data=None):
        self.calls.append((method, path, credential))
        if credential in self.expired:
            raise CredentialExpired("JWT expired")
        for failure in list(self.failures):
            fail_method, prefix, error = failure
            if fail_method == method and path.startswith(prefix):
                self.failures.remove(failure)
                raise error

        if path.startswith("/rest/v1/"):
            return FakeResponse(self._rest(method, path[len("/rest/v1/"):], params or [], json))
        if path.startswith("/storage/v1/object/list/"):
            return FakeResponse(self._list_objects(path[len("/storage/v1/object/list/"):], json))
        if path.startswith("/storage/v1/object/"):
            rest = unquote(path[len("/storage/v1/object/"):])
            if method == "POST":
                bucket, _, object_path = rest.partition("/")
                return FakeResponse(self._upload(bucket, object_path, data, headers or {}))
            if method == "DELETE":
                return FakeResponse(self._remove(rest, json["prefixes"]))
        raise AssertionError(f"Unexpected request {method} {path}")

    # ----- relational store -----

    def _rest(self, method, table, params, body):
        columns = "*"
        filters, order, limit, offset = [], None, None, 0
        for key, value in params:
            if key == "select":
                columns = value
            elif key == "order":
                order = value
            elif key == "limit":
                limit = int(value)
            elif key == "offset":
                offset = int(value)
            else:
                filters.append((key, value))

        if method == "POST":
            inserted = [self._insert(table, row) for row in body]
            return [self._project(table, row, columns) for row in inserted]

        matched = [row for row in self.tables[table] if self._matches(row, filters)]
        if method == "PATCH":
            for row in matched:
                row.update(body)
        result = [self._project(table, row, columns) for row in matched]
        if method == "DELETE":
            self.tables[table] = [row for row in self.tables[table] if row not in matched]
            return result

        if order:
            column, _, direction = order.partition(".")
            result.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=direction == "desc")
        result = result[offset:]
        if limit is not None:
            result = result[:limit]
        return result[:MAX_ROWS]

    def _insert(self, table, row):
        for columns in UNIQUE.get(table, []):
            key = tuple(row.get(c) for c in columns)
            if any(tuple(existing.get(c) for c in columns) == key for existing in self.tables[table]):
                raise BackendError(
                    f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_key"',
                    code="23505",
                    status_code=409,
                )
        stored = {**DEFAULTS.get(table, {}), **copy.deepcopy(row)}
        if "id" not in stored:
            stored["id"] = next(self._ids[table])
        stored.setdefault("created_at", self._now())
        self.tables[table].append(stored)
        return stored

    @staticmethod
    def _matches(row, filters):
        for column, expression in filters:
            op, _, value = expression.partition(".")
            actual = _format_value(row.get(column))
            if op == "eq" and actual != value:
                return False
            if op == "ilike":
                pattern = "".join(".*" if ch == "*" else re.escape(ch) for ch in value)
                if not re.fullmatch(pattern, actual, re.IGNORECASE | re.DOTALL):
                    return False
        return True

    def _project(self, table, row, columns):
        projected = {}
        for item in _split_top_level(columns):
            if "(" in item:
                head, inner = item.split("(", 1)
                alias, _, target = head.partition(":")
                target = (target or alias).split("!")[0]
                projected[alias] = self._embed(table, row, target, inner[:-1])
            elif item == "*":
                projected.update(copy.deepcopy(row))
            else:
                projected[item] = copy.deepcopy(row.get(item))
        return projected

    def _embed(self, table, row, target, columns):
        cardinality, local, remote = RELATIONS[(table, target)]
        related = [r for r in self.tables[target] if r.get(remote) == row.get(local)]
        if cardinality == "one":
            return self._project(target, related[0], columns) if related else None
        return [self._project(target, r, columns) for r in related]

    # ----- object store -----

    def _upload(self, bucket, object_path, data, headers):
        if object_path in self.objects[bucket] and headers.get("x-upsert") != "true":
            raise BackendError("The resource already exists", code="Duplicate", status_code=409)
        self.objects[bucket][object_path] = {
            "content": data,
            "content_type": headers.get("Content-Type"),
            "created_at": self._now(),
        }
        return {"Key": f"{bucket}/{object_path}"}

    def _remove(self, bucket, paths):
        removed = []
        for path in paths:
            if self.objects[bucket].pop(path, None) is not None:
                removed.append({"name": path})
        return removed

    def _list_objects(self, bucket, body):
        prefix = body.get("prefix") or ""
        entries = []
        for path, meta in sorted(self.objects[bucket].items()):
            folder, _, name = path.rpartition("/")
            if folder != prefix:
                continue
            entries.append({"id": f"obj-{path}", "name": name, "created_at": meta["created_at"]})
        offset, limit = body.get("offset", 0), body.get("limit", 100)
        return entries[offset:offset + limit]


class FakeBoundClient(BoundClient):
    def __init__(self, backend, credential):
        super().__init__(backend.client, credential)
        self.backend = backend

    def request(self, method, path, **kwargs):
        return self.backend.handle(method, path, self.credential, **kwargs)


class RotatingTokenSource:
    """Hands out token-1, then token-2, ... on every forced refresh."""

    def __init__(self):
        self.version = 1
        self.calls = []

    async def __call__(self, force_refresh=False):
        self.calls.append(force_refresh)
        if force_refresh:
            self.version += 1
        return f"token-{self.version}"


@pytest.fixture(autouse=True)
def backend_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", BASE_URL)
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    for name in (
        "SUPABASE_SERVICE_ROLE_KEY",
        "IDENTITY_SECRET_KEY",
        "IDENTITY_API_URL",
        "IDENTITY_JWT_KEY",
        "IDENTITY_JWT_ALGORITHM",
        "BACKEND_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def tokens():
    return RotatingTokenSource()


@pytest.fixture
def client(backend):
    app.dependency_overrides[get_client_factory] = lambda: backend.factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def _rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _public_pem(private_key):
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()


@pytest.fixture(scope="session")
def signing_key():
    return _rsa_key()


@pytest.fixture(scope="session")
def foreign_key():
    return _rsa_key()


@pytest.fixture
def session_jwt(signing_key):
    """Builds identity-provider style session tokens: ``session_jwt(sid, key=None, expires_in=60)``."""

    def _make(sid, key=None, expires_in=60):
        claims = {"sid": sid, "sub": "user_1", "exp": int(time.time()) + expires_in}
        return pyjwt.encode(claims, key or signing_key, algorithm="RS256")

    return _make


@pytest.fixture
def identity_env(monkeypatch, signing_key):
    monkeypatch.setenv("IDENTITY_SECRET_KEY", "sk_test")
    monkeypatch.setenv("IDENTITY_JWT_KEY", _public_pem(signing_key))
    get_settings.cache_clear()
