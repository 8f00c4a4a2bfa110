"""
Standings core: score ingestion and rank maintenance.
"""

from .core import StandingsCore

__all__ = ['StandingsCore']
