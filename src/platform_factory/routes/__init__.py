"""HTTP route modules for the platform factory."""

from .platforms import PlatformRequest, create_platforms_router

__all__ = [
    'PlatformRequest',
    'create_platforms_router',
]
