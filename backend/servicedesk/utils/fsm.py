"""Finite state machine utility for enforcing allowed status transitions.

Used by the ticket lifecycle; the graph is the single source of truth for which
status may follow which. A status is never its own successor, so re-sending the
current status is rejected like any other edge outside the graph.
Usage:
    from servicedesk.utils.fsm import TransitionValidator
    PART_FSM = TransitionValidator({
        'ordered': {'delivered'},
        'delivered': {'installed'},
        'installed': set(),
    })
    PART_FSM.assert_can_transition(current_status, target_status)

Raises InvalidTransition (400) if invalid.
"""
from __future__ import annotations
from typing import Dict, Set, Iterable, Tuple
from servicedesk.errors import InvalidTransition

class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    @property
    def states(self) -> Tuple[str, ...]:
        return tuple(self.graph.keys())

    def allowed_next(self, current: str) -> Tuple[str, ...]:
        # keep declaration order of states for stable API output
        allowed = self.graph.get(current, set())
        return tuple(s for s in self.states if s in allowed)

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def is_terminal(self, state: str) -> bool:
        return not self.graph.get(state)

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, self.field_name)
        return True

    def terminal_states(self) -> Iterable[str]:
        return [s for s in self.states if self.is_terminal(s)]

__all__ = ['TransitionValidator']
