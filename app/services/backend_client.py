"""
Thin client for the hosted backend's REST surface.

Tables are reached through the PostgREST protocol (``/rest/v1/<table>``) and
files through the storage API (``/storage/v1/object/...``). Calls are blocking
(``requests``); repositories dispatch them with ``asyncio.to_thread``.

The protocols are spoken directly over ``requests`` rather than through the
provider's SDK packages (supabase, postgrest, storage3). Those bind a bearer
token to a client object, while here every request carries the caller's own
credential, and only the handful of calls below is ever needed.

At most one ``BackendClient`` is built per mode (anonymous / authenticated) for
the life of the process. The Authorization header is attached per request from
the ``BoundClient`` view, so rotating credentials never needs a new client.
``requests.Session`` is not thread-safe, so each worker thread gets its own
session from the client; they are all closed together by ``close()``.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import quote

import requests

from app.config import Settings, get_settings
from app.errors import CredentialExpired
from app.logger import get_logger

logger = get_logger("BackendClient")

EXPIRED_CODE = "PGRST303"
EXPIRED_MESSAGE = "jwt expired"
NO_ROWS_CODE = "PGRST116"
MULTIPLE_ROWS_CODE = "MULTIPLE_ROWS"
UNIQUE_VIOLATION_CODE = "23505"
NETWORK_ERROR_CODE = "NETWORK"

ANONYMOUS = "anonymous"
AUTHENTICATED = "authenticated"


class BackendError(Exception):
    """An error reported by the backend (or the network on the way to it)."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.code == NO_ROWS_CODE

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION_CODE

    @property
    def is_conflict(self) -> bool:
        # Storage reports an existing object as 409 / "Duplicate"
        return self.status_code == 409 or self.code == "Duplicate" or self.is_unique_violation


def is_credential_expired(code: Optional[str], message: Optional[str]) -> bool:
    if code == EXPIRED_CODE:
        return True
    return EXPIRED_MESSAGE in (message or "").lower()


def _raise_for_response(resp: requests.Response) -> None:
    if resp.status_code < 400:
        return

    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    code = payload.get("code") or payload.get("error")
    message = payload.get("message") or payload.get("msg") or resp.text or f"HTTP {resp.status_code}"

    status_code = resp.status_code
    # Storage errors carry their own statusCode string in the body
    body_status = payload.get("statusCode")
    if body_status is not None and str(body_status).isdigit():
        status_code = int(body_status)

    if is_credential_expired(code, message):
        raise CredentialExpired(message)

    raise BackendError(
        message,
        code=str(code) if code is not None else None,
        status_code=status_code,
        details=payload.get("details"),
    )


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _compact(columns: str) -> str:
    # Embedded selects are written across lines for readability; PostgREST wants them flat
    return "".join(columns.split())


class BackendClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 25.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update({"apikey": self.api_key})
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def request(
        self,
        method: str,
        path: str,
        credential: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        merged = {"Authorization": f"Bearer {credential or self.api_key}"}
        if headers:
            merged.update(headers)

        logger.debug(f"{method} {path} params={kwargs.get('params')}")
        try:
            resp = self.session.request(method, url, headers=merged, timeout=self.timeout, **kwargs)
        except requests.RequestException as rexc:
            logger.error(f"Network error on {method} {path}: {rexc}")
            raise BackendError(f"Network error contacting backend: {rexc}", code=NETWORK_ERROR_CODE) from rexc

        _raise_for_response(resp)
        return resp

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path, safe='/')}"

    def close(self) -> None:
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()


class BoundClient:
    """A ``BackendClient`` paired with the credential of one caller."""

    def __init__(self, client: BackendClient, credential: Optional[str] = None):
        self.client = client
        self.credential = credential

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        return self.client.request(method, path, credential=self.credential, **kwargs)

    def table(self, name: str) -> "QueryBuilder":
        return QueryBuilder(self, name)

    def storage(self, bucket: str) -> "StorageBucket":
        return StorageBucket(self, bucket)


class QueryBuilder:
    def __init__(self, bound: BoundClient, table: str):
        self._bound = bound
        self.table = table
        self.method = "GET"
        self.columns = "*"
        self.filters: List[Tuple[str, str]] = []
        self.body: Any = None
        self._order: Optional[str] = None
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self._cardinality = "many"

    def select(self, columns: str = "*") -> "QueryBuilder":
        self.columns = _compact(columns)
        return self

    def insert(self, rows: Union[Dict[str, Any], List[Dict[str, Any]]]) -> "QueryBuilder":
        self.method = "POST"
        self.body = rows if isinstance(rows, list) else [rows]
        return self

    def update(self, values: Dict[str, Any]) -> "QueryBuilder":
        self.method = "PATCH"
        self.body = values
        return self

    def delete(self) -> "QueryBuilder":
        self.method = "DELETE"
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        self.filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def ilike(self, column: str, pattern: str) -> "QueryBuilder":
        # PostgREST accepts * as the LIKE wildcard in URLs
        self.filters.append((column, f"ilike.{pattern.replace('%', '*')}"))
        return self

    def order(self, column: str, ascending: bool = True) -> "QueryBuilder":
        self._order = f"{column}.{'asc' if ascending else 'desc'}"
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._limit = count
        return self

    def offset(self, count: int) -> "QueryBuilder":
        self._offset = count
        return self

    def single(self) -> "QueryBuilder":
        self._cardinality = "one"
        return self

    def maybe_single(self) -> "QueryBuilder":
        self._cardinality = "maybe"
        return self

    def params(self) -> List[Tuple[str, str]]:
        params = [("select", self.columns)]
        params.extend(self.filters)
        if self._order:
            params.append(("order", self._order))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        if self._offset is not None:
            params.append(("offset", str(self._offset)))
        return params

    def execute(self) -> Any:
        headers = {}
        if self.method != "GET":
            headers["Prefer"] = "return=representation"

        resp = self._bound.request(
            self.method,
            f"/rest/v1/{self.table}",
            params=self.params(),
            json=self.body,
            headers=headers,
        )
        rows = resp.json() if resp.content else []
        return self._shape(rows)

    def _shape(self, rows: List[Dict[str, Any]]) -> Any:
        if self._cardinality == "many":
            return rows
        if len(rows) > 1:
            raise BackendError(
                f"Expected a single row from {self.table}, got {len(rows)}",
                code=MULTIPLE_ROWS_CODE,
                status_code=406,
            )
        if not rows:
            if self._cardinality == "one":
                raise BackendError(f"No rows returned from {self.table}", code=NO_ROWS_CODE, status_code=406)
            return None
        return rows[0]


class StorageBucket:
    def __init__(self, bound: BoundClient, bucket: str):
        self._bound = bound
        self.bucket = bucket

    def upload(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        self._bound.request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{quote(path, safe='/')}",
            data=content,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "cache-control": f"max-age={cache_control}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        return path

    def remove(self, paths: List[str]) -> List[Dict[str, Any]]:
        resp = self._bound.request("DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": paths})
        return resp.json() if resp.content else []

    def list(self, prefix: str = "", limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        resp = self._bound.request(
            "POST",
            f"/storage/v1/object/list/{self.bucket}",
            json={
                "prefix": prefix,
                "limit": limit,
                "offset": offset,
                "sortBy": {"column": "name", "order": "asc"},
            },
        )
        return resp.json() if resp.content else []

    def public_url(self, path: str) -> str:
        return self._bound.client.public_url(self.bucket, path)


# ---------- PROCESS-WIDE CLIENT CACHE ----------

_clients: Dict[str, BackendClient] = {}
_clients_lock = threading.Lock()


def get_client(credential: Optional[str] = None, settings: Optional[Settings] = None) -> BoundClient:
    mode = AUTHENTICATED if credential else ANONYMOUS
    with _clients_lock:
        client = _clients.get(mode)
        if client is None:
            settings = settings or get_settings()
            client = BackendClient(settings.backend_url, settings.anon_key, timeout=settings.backend_timeout)
            _clients[mode] = client
            logger.info(f"Created {mode} backend client for {settings.backend_url}")
    return BoundClient(client, credential)


def close_clients() -> None:
    with _clients_lock:
        for client in _clients.values():
            client.close()
        _clients.clear()
