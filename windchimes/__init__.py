"""Privacy-preserving view counter package."""

from .api import ChimeAPI, build_api
from .models import ChimeConfig
from .service_http import create_app

__all__ = ["ChimeAPI", "ChimeConfig", "build_api", "create_app"]

__version__ = "0.1.0"
