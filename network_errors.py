# Packages
from __future__ import annotations
from typing import Optional


class EngineError(ValueError):
    """Base class for every failure raised by the Shapley engine."""


class ValidationError(EngineError):
    """
    Raised while building the topology, before any valuation work.

    Parameters
    ----------
    message : str
        Human-readable description of the failed check
    identifier : str, optional
        The offending device, link, demand or operator identifier
    """

    def __init__(self, message: str, identifier: Optional[str] = None) -> None:
        super().__init__(message)
        self.identifier = identifier


class ComputationOverflowError(EngineError):
    """Raised when the operator count exceeds the exhaustive-enumeration bound."""

    def __init__(self, n_operators: int, bound: int) -> None:
        super().__init__(
            f"Too many operators; {n_operators} operators would need {2 ** n_operators} coalition "
            f"valuations, but the configured limit is {bound} operators."
        )
        self.n_operators = n_operators
        self.bound = bound


class NumericError(EngineError):
    """Raised when a coalition or Shapley value is not finite."""
