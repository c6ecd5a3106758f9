"""Shared API models."""

from zkrelay.models.common import HealthResponse


__all__ = ["HealthResponse"]
