"""
Services package for the standings core.

Result ledger, aggregate engine, leaderboard cache, rank queries and
statistics reports, each built on BaseService.
"""

from .base import BaseService

__all__ = ['BaseService']
