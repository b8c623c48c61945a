"""Reads of other users' public data.

This module provides cached access to friends' profiles and shelves.
"""

from src.user.profiles import ProfileReader, PublicProfile, TTLCache

__all__ = [
    "ProfileReader",
    "PublicProfile",
    "TTLCache",
]
