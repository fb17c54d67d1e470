"""HTTP surface for the hosted function endpoints."""

from autobiz.api.main import create_app

__all__ = ["create_app"]
