"""HTTP control API."""

from ledbridge.api.app import create_app

__all__ = ["create_app"]
