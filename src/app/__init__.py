"""Application bootstrap helpers for the Line Trainer project."""

from .runtime import run_trainer
from .settings import AppSettings

__all__ = ["run_trainer", "AppSettings"]
