"""HTTP API for the erasure workflow."""

from letright.api.app import create_app

__all__ = ["create_app"]
