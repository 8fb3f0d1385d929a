"""Game domain services: sessions, phases, timers, judging and images.

This package holds the round orchestration engine. HTTP routes and socket
handlers call into :class:`GameEngine`; nothing here knows about Flask
requests or Socket.IO rooms, which keeps transport concerns separated from
core game mechanics.
"""

from .engine import GameEngine, run_inline
from .errors import GameError
from .events import EventBus, GameEvent
from .state import Phase

__all__ = ['GameEngine', 'GameError', 'EventBus', 'GameEvent', 'Phase', 'run_inline']
