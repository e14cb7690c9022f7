"""
Entry point for running Pyroregistre as a module.

Usage:
    python -m pyroregistre [command] [options]
"""

from pyroregistre.cli import main

if __name__ == "__main__":
    main()
