"""Version resolvers for different ecosystems."""

from .npm import InvalidRangeError, NpmVersionResolver, WILDCARD

__all__ = [
    "InvalidRangeError",
    "NpmVersionResolver",
    "WILDCARD",
]
