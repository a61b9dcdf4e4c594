"""Build settings.

Defaults can be overridden through ``OPENAPI_DECL_*`` environment variables
or by the CLI.
"""

import os

from pydantic import BaseModel

DEFAULT_OPENAPI_VERSION = "3.0.3"
DEFAULT_TITLE = "Generated API"
DEFAULT_VERSION = "1.0"
DEFAULT_MEDIA_TYPE = "*/*"
DEFAULT_SERVER_URL = "/"


class BuildSettings(BaseModel):
    """Values used where the declarations leave something required unset."""

    openapi_version: str = DEFAULT_OPENAPI_VERSION
    default_title: str = DEFAULT_TITLE
    default_version: str = DEFAULT_VERSION
    default_media_type: str = DEFAULT_MEDIA_TYPE
    default_server_url: str = DEFAULT_SERVER_URL

    @classmethod
    def from_env(cls, **overrides) -> "BuildSettings":
        values = {
            "openapi_version": os.getenv("OPENAPI_DECL_OPENAPI_VERSION", DEFAULT_OPENAPI_VERSION),
            "default_title": os.getenv("OPENAPI_DECL_TITLE", DEFAULT_TITLE),
            "default_version": os.getenv("OPENAPI_DECL_VERSION", DEFAULT_VERSION),
            "default_media_type": os.getenv("OPENAPI_DECL_MEDIA_TYPE", DEFAULT_MEDIA_TYPE),
            "default_server_url": os.getenv("OPENAPI_DECL_SERVER_URL", DEFAULT_SERVER_URL),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
