import asyncio
from typing import Any, Callable, Optional

from app.errors import AlreadyExists, CredentialExpired, NotFound, PersistenceError
from app.logger import get_logger
from app.services.auth import AnonymousTokenSource
from app.services.backend_client import BackendError, BoundClient, StorageBucket, get_client
from app.services.retry import TokenSource, with_retry

ClientFactory = Callable[[Optional[str]], BoundClient]


class Repository:
    """Shared plumbing: token acquisition, single-shot refresh, thread dispatch and error normalization."""

    name = "Repository"

    def __init__(self, token_source: Optional[TokenSource] = None, client_factory: ClientFactory = get_client):
        self.token_source = token_source or AnonymousTokenSource()
        self.client_factory = client_factory
        self.logger = get_logger(self.name)

    async def _run(self, action: str, fn: Callable[..., Any], *args, not_found: Optional[str] = None) -> Any:
        """
        Run the blocking ``fn(client, *args)`` off the event loop with a client
        bound to the current credential. Backend failures that ``fn`` leaves
        unhandled become ``NotFound`` (no rows, when ``not_found`` is given) or
        ``PersistenceError``.
        """

        async def operation(credential):
            client = self.client_factory(credential)
            try:
                return await asyncio.to_thread(fn, client, *args)
            except BackendError as exc:
                raise self._normalize(action, exc, not_found)

        return await with_retry(operation, self.token_source)

    def _normalize(self, action: str, exc: BackendError, not_found: Optional[str] = None):
        if not_found and exc.is_not_found:
            self.logger.info(f"{action}: {not_found}")
            return NotFound(not_found, original_error=exc)
        self.logger.error(f"[ERROR] {action} failed: [{exc.code}] {exc.message}")
        if exc.is_unique_violation:
            return AlreadyExists(f"Error {action}: {exc.message}", original_error=exc)
        return PersistenceError(f"Error {action}: {exc.message}", original_error=exc)

    def _discard_upload(self, bucket: StorageBucket, path: str) -> None:
        """Best-effort removal of an object whose row insert failed. Leftovers are swept by the scheduler."""
        try:
            bucket.remove([path])
            self.logger.info(f"Removed orphaned object {bucket.bucket}/{path}")
        except (BackendError, CredentialExpired) as exc:
            self.logger.warning(f"Could not remove orphaned object {bucket.bucket}/{path}: {exc}")
