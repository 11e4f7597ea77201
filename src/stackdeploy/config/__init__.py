"""
stackdeploy configuration.

Pydantic-based settings read from environment variables (STACKDEPLOY_*)
and an optional .env file.
"""

from stackdeploy.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
