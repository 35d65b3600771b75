from typing import Any, Awaitable, Callable, Optional

from app.errors import CredentialExpired
from app.logger import get_logger

logger = get_logger("Retry")

TokenSource = Callable[..., Awaitable[Optional[str]]]


async def with_retry(operation: Callable[[Optional[str]], Awaitable[Any]], token_source: TokenSource) -> Any:
    """
    Run ``operation(credential)``. On an expired credential, force one token
    refresh and run it exactly once more. Anything else propagates unchanged.
    The wrapped operation is not assumed to be idempotent.
    """
    credential = await token_source()
    try:
        return await operation(credential)
    except CredentialExpired:
        logger.info("Token expired, refreshing and retrying once...")

    credential = await token_source(force_refresh=True)
    return await operation(credential)
