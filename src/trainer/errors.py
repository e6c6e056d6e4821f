"""Exceptions raised by the line trainer."""


class TrainerError(Exception):
    """Base exception for all line trainer errors."""


class ContractViolation(TrainerError):
    """Raised when a caller breaks the scheduling contract (a bug, not a runtime condition)."""
