from .api_router import CommonRouter, get_current_user
from .default_router import DefaultRouter
from .open_router import OpenRouter
from .status_router import StatusRouter

__all__ = ["CommonRouter", "DefaultRouter", "OpenRouter", "StatusRouter", "get_current_user"]
