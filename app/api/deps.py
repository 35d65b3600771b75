from typing import Optional

from fastapi import Depends, Header

from app.config import get_settings
from app.logger import get_logger
from app.services.application_repository import ApplicationRepository
from app.services.auth import AnonymousTokenSource, SessionTokenSource, StaticTokenSource, verified_session_id
from app.services.backend_client import get_client
from app.services.company_repository import CompanyRepository
from app.services.job_repository import JobRepository

logger = get_logger("Deps")


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_token_source(
    authorization: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
):
    """
    X-Session-Id is only honoured next to a bearer token that the identity provider
    signed for that same session. Otherwise the header is ignored.
    """
    settings = get_settings()
    token = _bearer(authorization)
    if x_session_id and settings.identity_enabled:
        if token and verified_session_id(token, settings) == x_session_id:
            return SessionTokenSource(x_session_id, settings)
        logger.warning(f"Ignoring X-Session-Id {x_session_id}: no matching signed bearer token")
    if token:
        return StaticTokenSource(token)
    return AnonymousTokenSource()


def get_client_factory():
    return get_client


def get_job_repository(token_source=Depends(get_token_source), client_factory=Depends(get_client_factory)):
    return JobRepository(token_source, client_factory)


def get_application_repository(token_source=Depends(get_token_source), client_factory=Depends(get_client_factory)):
    return ApplicationRepository(token_source, client_factory)


def get_company_repository(token_source=Depends(get_token_source), client_factory=Depends(get_client_factory)):
    return CompanyRepository(token_source, client_factory)
