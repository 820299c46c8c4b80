from .app import create_app
from .config import Settings
from .service import ProxyService

__all__ = ["create_app", "ProxyService", "Settings"]
