"""Exceptions raised by the cross-product engine and the term utilities."""

from __future__ import annotations


class NewsflowError(Exception):
    """Base class for all newsflow errors."""


class ValidationError(NewsflowError, ValueError):
    """Caller input is inconsistent (dimensions, option combinations, bounds)."""


class ConfigurationError(NewsflowError, ValueError):
    """Unknown option token (crossfun, normalize, date_unit, weight)."""


class CrossprodCancelled(NewsflowError):
    """Raised when the caller aborts a computation between batches."""


__all__ = [
    "NewsflowError",
    "ValidationError",
    "ConfigurationError",
    "CrossprodCancelled",
]
