"""Ports (interfaces) for database-agnostic business logic."""

from .progress_repository import ProgressRepository

__all__ = ["ProgressRepository"]
