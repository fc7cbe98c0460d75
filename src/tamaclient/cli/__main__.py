"""Entry point for running the CLI as a module.

Usage:
    python -m tamaclient.cli
"""

from tamaclient.cli.app import app

if __name__ == "__main__":
    app()
