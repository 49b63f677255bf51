from src.services import application_service
from src.services.engine import SyncEngine, create_engine


__all__ = [
    "SyncEngine",
    "application_service",
    "create_engine",
]
