"""Explicit transition tables for the engine's state machines."""

from __future__ import annotations

from enum import Enum
from typing import Generic, Iterable, Mapping, TypeVar

from consult_os.errors import InvalidTransitionError

S = TypeVar("S", bound=Enum)


class TransitionTable(Generic[S]):
    """Allowed edges of a state machine, keyed by source state.

    States absent from the mapping (or mapped to nothing) are terminal.
    """

    def __init__(self, name: str, edges: Mapping[S, Iterable[S]]):
        self.name = name
        self._edges: dict[S, frozenset[S]] = {
            state: frozenset(targets) for state, targets in edges.items()
        }

    def allowed(self, current: S) -> frozenset[S]:
        return self._edges.get(current, frozenset())

    def can(self, current: S, target: S) -> bool:
        return target in self.allowed(current)

    def is_terminal(self, state: S) -> bool:
        return not self.allowed(state)

    def check(self, current: S, target: S) -> S:
        """Return *target* if the edge exists, raise otherwise."""
        if not self.can(current, target):
            raise InvalidTransitionError(self.name, current, target)
        return target

    def path(self, current: S, target: S) -> list[S]:
        """Shortest chain of states leading from *current* to *target*.

        Used when a server reports a state several edges ahead of the local
        copy; every intermediate edge is still validated.
        """
        if current == target:
            return []
        frontier: list[list[S]] = [[current]]
        seen = {current}
        while frontier:
            chain = frontier.pop(0)
            for nxt in sorted(self.allowed(chain[-1]), key=lambda s: s.value):
                if nxt in seen:
                    continue
                if nxt == target:
                    return chain[1:] + [nxt]
                seen.add(nxt)
                frontier.append(chain + [nxt])
        raise InvalidTransitionError(self.name, current, target)
