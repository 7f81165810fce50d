from khareedo.core.config import settings
from khareedo.core.database import get_db, Base, get_engine

__all__ = ["settings", "get_db", "Base", "get_engine"]
