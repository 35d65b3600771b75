import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from app.errors import ConfigError

# Load values from .env file if present
load_dotenv()

DEFAULT_IDENTITY_API_URL = "https://api.clerk.com/v1"


@dataclass(frozen=True)
class Settings:
    backend_url: str
    anon_key: str
    service_role_key: Optional[str] = None
    identity_api_url: str = DEFAULT_IDENTITY_API_URL
    identity_secret_key: Optional[str] = None
    identity_token_template: str = "supabase"
    identity_jwt_key: Optional[str] = None
    identity_jwt_algorithm: str = "RS256"
    backend_timeout: float = 25.0

    @property
    def identity_enabled(self) -> bool:
        # Minting needs the secret key; trusting X-Session-Id needs the key that signs session tokens
        return bool(self.identity_secret_key and self.identity_jwt_key)


def _read_key(value: Optional[str]) -> Optional[str]:
    # PEM keys in .env files are usually written on one line with literal \n
    if not value:
        return None
    return value.strip().replace("\\n", "\n")


def load_settings() -> Settings:
    """
    Read settings from the environment.
    The backend base URL and its public key are both required; anything else is optional.
    """
    backend_url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")
    anon_key = (os.getenv("SUPABASE_ANON_KEY") or "").strip()

    missing = []
    if not backend_url:
        missing.append("SUPABASE_URL")
    if not anon_key:
        missing.append("SUPABASE_ANON_KEY")
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    try:
        timeout = float(os.getenv("BACKEND_TIMEOUT", "25"))
    except ValueError:
        raise ConfigError("BACKEND_TIMEOUT must be a number of seconds")

    return Settings(
        backend_url=backend_url,
        anon_key=anon_key,
        service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
        identity_api_url=(os.getenv("IDENTITY_API_URL") or DEFAULT_IDENTITY_API_URL).rstrip("/"),
        identity_secret_key=os.getenv("IDENTITY_SECRET_KEY") or None,
        identity_token_template=os.getenv("IDENTITY_TOKEN_TEMPLATE") or "supabase",
        identity_jwt_key=_read_key(os.getenv("IDENTITY_JWT_KEY")),
        identity_jwt_algorithm=os.getenv("IDENTITY_JWT_ALGORITHM") or "RS256",
        backend_timeout=timeout,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
