"""
Presale activity feed.

Plans a non-uniform schedule of simulated purchase events over a time window
and delivers each one to a Discord channel at its scheduled instant, resuming
from a persisted cursor after restarts.
"""

__all__: list[str] = []
