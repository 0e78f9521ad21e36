"""HTTP API for the storefront checkout."""
from .main import create_app

__all__ = ["create_app"]
