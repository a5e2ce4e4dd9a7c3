"""Durable state for the harvest pipeline."""

from .state_store import StateStore

__all__ = ["StateStore"]
