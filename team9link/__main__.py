"""
Entry point for running team9link as a module: python -m team9link
"""

from team9link.cli.commands import app

if __name__ == "__main__":
    app()
