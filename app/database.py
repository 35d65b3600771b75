import os
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
import urllib.parse
from dotenv import load_dotenv

# Load values from .env file if present
load_dotenv()

DB_USER = os.getenv("DB_USER", "postgres")
DB_PASS_RAW = os.getenv("DB_PASS", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "postgres")

# Encode password only if it exists
DB_PASS = urllib.parse.quote_plus(DB_PASS_RAW) if DB_PASS_RAW else ""

# Direct connection to the hosted Postgres, used only to provision the schema.
# Runtime traffic goes through the backend's REST endpoints (app/services/backend_client.py).
if DB_PASS:
    DATABASE_URL = f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
else:
    DATABASE_URL = f"postgresql+psycopg2://{DB_USER}@{DB_HOST}:{DB_PORT}/{DB_NAME}"

Base = declarative_base()


def get_engine(url: str = DATABASE_URL):
    return create_engine(url, pool_pre_ping=True)
