"""Recoverable error categories.

Each is raised at the boundary where it happens and converted to a log
entry there. None of them is allowed to stop the monitoring loop.
"""

from __future__ import annotations


class OracleBotError(Exception):
    """Base exception for monitor errors."""


class ConnectivityError(OracleBotError):
    """Market data source unreachable or the stream closed."""


class ExternalComputationError(OracleBotError):
    """Oracle call failed or the contract rejected the input."""


class DataShapeError(OracleBotError):
    """Source payload did not match any known shape."""
