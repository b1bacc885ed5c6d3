"""
Progress reporting module for structured transition events.
"""

from .event_sender import EventEmitter

__all__ = ["EventEmitter"]
