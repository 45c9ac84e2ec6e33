import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from dotenv import load_dotenv

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./catalogue.db")
DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", "20"))


def engine_options(url: str, timeout: int = DB_TIMEOUT_SECONDS) -> dict:
    """Keyword arguments for ``create_engine`` bounding every store call by ``timeout``."""
    if url.startswith("sqlite"):
        # SQLite waits on a locked database file for at most ``timeout`` seconds
        return {"connect_args": {"check_same_thread": False, "timeout": timeout}}
    return {
        "connect_args": {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        },
        "pool_pre_ping": True,
        "pool_timeout": timeout,
        "pool_size": 5,
    }


engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
