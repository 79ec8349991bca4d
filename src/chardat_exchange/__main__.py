"""
Main entry point for running chardat-exchange as a module.

This allows the package to be executed with:
    python -m chardat_exchange

The recommended way is the installed CLI command:
    chardat-exchange
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
