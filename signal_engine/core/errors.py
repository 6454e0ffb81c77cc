"""
Error taxonomy shared by indicators, filters, gateways and the lifecycle manager.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for expected engine failures."""


class InsufficientData(EngineError):
    """Indicator window shorter than the required period."""


class InvalidPrice(EngineError):
    """Signal price is missing, non-numeric or non-positive."""


class DataUnavailable(EngineError):
    """Market data could not be fetched."""


class GatewayError(EngineError):
    """Exchange call failed. Carries the upstream message."""

    def __init__(self, message: str, upstream: str = ""):
        super().__init__(message)
        self.upstream = upstream or message


class DecisionError(EngineError):
    """External reasoning service failed or returned something unparseable."""


class DecisionTimeout(DecisionError):
    """External reasoning service did not answer in time."""
