"""
Command-line interface wrapper for chardat-exchange.

This module provides the entry point used by pip-installed scripts. It delegates
to the main() function in the server module.
"""

import sys

from .server import main


def cli_main() -> None:
    """
    Main CLI entry point for the chardat-exchange command.

    Referenced in pyproject.toml as the console script entry point.
    """
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    cli_main()
