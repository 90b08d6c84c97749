import logging

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from .base import StorageBackend
from .memory import MemoryStorage
from .sql import SqlStorage

logger = logging.getLogger(__name__)


def _display_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except SQLAlchemyError:
        return "<invalid url>"


def create_storage(settings: Settings) -> StorageBackend:
    """Pick the storage backend once at startup.

    DATABASE_URL selects the relational store; without it a local SQLite file is
    used. If the relational store cannot be initialized the process keeps running
    on the in-memory store.
    """
    url = settings.sqlalchemy_url
    try:
        storage = SqlStorage.from_url(url)
        logger.info(f"Using relational store at {_display_url(url)}")
        return storage
    except SQLAlchemyError as e:
        logger.error(
            f"Relational store at {_display_url(url)} is unavailable ({e.__class__.__name__}: {e}). "
            "Falling back to in-memory storage; data will not survive a restart."
        )
        return MemoryStorage()
