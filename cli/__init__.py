"""CLI package for the Social Account Connector

This package provides the command-line interface for running the connector
server and managing connected accounts.
"""

from cli.main import main

__all__ = [
    "main",
]
