"""siteagents command-line interface."""

from siteagents.cli.app import app

__all__ = ["app"]
