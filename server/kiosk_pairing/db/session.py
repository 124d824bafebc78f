from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from kiosk_pairing.core.config import get_settings

settings = get_settings()

_connect_args = {}
if settings.database_url_sync.startswith("sqlite"):
    _connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url_sync,
    pool_pre_ping=True,
    connect_args=_connect_args,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
