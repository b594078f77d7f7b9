"""
CLI layer for harvest.

Terminal transport only: argument parsing, coloured output and tables.
Pipeline logic lives in ``harvest.orchestration``.

Entry point::

    harvest --help
"""

from harvest.cli.app import app

__all__ = ["app"]
