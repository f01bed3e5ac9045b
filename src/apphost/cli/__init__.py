"""
CLI layer for apphost.

Terminal transport only: argument parsing, coloured output and table
formatting. Orchestration lives in :mod:`apphost.orchestration`.

Entry point::

    apphost --help
"""

from apphost.cli.app import app

__all__ = ["app"]
