"""Platform factory: provisions, verifies, and rolls back tenant platforms."""

from .main import AppDependencies, create_app
from .settings import FactorySettings

__version__ = "0.1.0"

__all__ = [
    "AppDependencies",
    "FactorySettings",
    "create_app",
]
