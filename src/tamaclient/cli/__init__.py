"""Tamaclient CLI.

Usage:
    tama --help
"""

from tamaclient.cli.app import app

__all__ = ["app"]
