"""Spaced-repetition trainer for memorising script lines."""

from .cards import DisplayTier, EaseStreakCard, Rating, Scheme, StandardCard
from .errors import ContractViolation, TrainerError
from .lines import ScriptLineSource
from .srs import Advancement, build_memory_model

__all__ = [
    "Advancement",
    "ContractViolation",
    "DisplayTier",
    "EaseStreakCard",
    "Rating",
    "Scheme",
    "ScriptLineSource",
    "StandardCard",
    "TrainerError",
    "build_memory_model",
]
