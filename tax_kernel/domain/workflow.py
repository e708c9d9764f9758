"""
Lifecycle state machines as data.

The declaration lifecycle and the VAT carry-forward lifecycle are each a
``Workflow``; services look up the ``Transition`` for an action instead of
branching on status.  At most one transition exists per (state, action)
pair, and a terminal state has none.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Guard:
    """Named precondition.  Evaluated by the owning service, not here."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    # Set on the transition at which ledger rows (loss usages, carry-forward
    # applications) are written.
    applies_ledger: bool = False


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    _by_key: dict[tuple[str, str], Transition] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} is not declared")
        for t in self.transitions:
            if {t.from_state, t.to_state} - set(self.states):
                raise ValueError(f"{self.name}: '{t.action}' references an unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state} has action '{t.action}'")
            key = (t.from_state, t.action)
            if key in self._by_key:
                raise ValueError(f"{self.name}: '{t.action}' defined twice from {t.from_state}")
            self._by_key[key] = t

    def transition_for(self, from_state: str, action: str) -> Transition | None:
        return self._by_key.get((from_state, action))

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        return tuple(action for state, action in self._by_key if state == from_state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
