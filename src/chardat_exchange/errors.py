"""Exception types raised by chardat-exchange."""

from __future__ import annotations


class ChardatError(Exception):
    """Base class for every error raised by this package."""


class MissingPartError(ChardatError):
    """Raised when a mandatory part of a character cannot be resolved.

    Attributes:
        roles: Names of the mandatory roles that were not found.
    """

    def __init__(self, roles: list[str], node_name: str = "") -> None:
        self.roles = roles
        where = f" under {node_name!r}" if node_name else ""
        super().__init__(f"Missing mandatory character parts{where}: {', '.join(roles)}")


class IncompatibleSkeletonError(ChardatError):
    """Raised when a skeleton pose does not match the live skeleton."""


class SnapshotFormatError(ChardatError):
    """Raised when snapshot bytes cannot be decoded into a snapshot."""


class TransferError(ChardatError):
    """Raised when received chunks cannot be reassembled."""
