"""
State machine definitions for document lifecycles.

A StateMachine is a static description: which actions are allowed from which
status, which permission each action needs, and which actions carry extra
guards (reason codes, segregation of duties, eligibility callbacks). Running a
transition against storage is the gateway's job (src.lifecycle.gateway).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

from src.lifecycle.errors import InvalidTransitionError, UnknownEntityError

CREATE_ACTION = "CREATE"

SAME_DOCUMENT = "SAME_DOCUMENT"
ANY_DOCUMENT = "ANY_DOCUMENT"


@dataclass(frozen=True)
class Transition:
    source: str
    action: str
    target: str


@dataclass(frozen=True)
class SoDRule:
    """
    Segregation-of-duties rule: a user who performed any of `first_actions`
    may not perform `second_action`.

    SAME_DOCUMENT rules only look at the document being transitioned;
    ANY_DOCUMENT rules look at every document of the same type inside the
    configured lookback window.
    """

    code: str
    first_actions: Tuple[str, ...]
    second_action: str
    scope: str = SAME_DOCUMENT


@dataclass(frozen=True, eq=False)
class StateMachine:
    entity_type: str
    initial_state: str
    transitions: Tuple[Transition, ...]
    final_states: FrozenSet[str] = frozenset()
    permissions: Mapping[str, str] = field(default_factory=dict)
    reason_required: FrozenSet[str] = frozenset()
    sod_rules: Tuple[SoDRule, ...] = ()
    eligibility_actions: FrozenSet[str] = frozenset()
    label: str = ""

    def __post_init__(self) -> None:
        index: Dict[str, Dict[str, str]] = {}
        states: List[str] = [self.initial_state]
        for t in self.transitions:
            if t.source in self.final_states:
                raise ValueError(f"{self.entity_type}: final state {t.source} cannot have transitions")
            by_action = index.setdefault(t.source, {})
            if t.action in by_action:
                raise ValueError(f"{self.entity_type}: duplicate action {t.action} from {t.source}")
            by_action[t.action] = t.target
            for s in (t.source, t.target):
                if s not in states:
                    states.append(s)
        for s in sorted(self.final_states):
            if s not in states:
                states.append(s)
        object.__setattr__(self, "_index", index)
        object.__setattr__(self, "_states", tuple(states))

    @property
    def states(self) -> Tuple[str, ...]:
        """All states, in order of first appearance."""
        return self._states  # type: ignore[attr-defined]

    @property
    def actions(self) -> FrozenSet[str]:
        return frozenset(t.action for t in self.transitions)

    def has_state(self, state: Optional[str]) -> bool:
        return state in self._states  # type: ignore[attr-defined]

    def is_final(self, state: Optional[str]) -> bool:
        return state in self.final_states

    def available_actions(self, state: Optional[str]) -> List[str]:
        if state is None or self.is_final(state):
            return []
        return list(self._index.get(state, {}))  # type: ignore[attr-defined]

    def target_for(self, state: Optional[str], action: str) -> str:
        """
        Resolve the target state of `action` from `state`.

        Raises:
            InvalidTransitionError: the state is unknown or final, or the
                action is not allowed from it.
        """
        details = {"entity_type": self.entity_type, "state": state, "action": action}
        if state is None:
            raise InvalidTransitionError("Current state is unknown", details=details)
        if not self.has_state(state):
            raise InvalidTransitionError(
                f"State {state} is not defined for {self.entity_type}", details=details
            )
        if self.is_final(state):
            raise InvalidTransitionError(
                f"State {state} is final and allows no further transitions", details=details
            )
        allowed = self.available_actions(state)
        if action not in allowed:
            raise InvalidTransitionError(
                f"Action {action} is not allowed from state {state}. Allowed: {', '.join(allowed) or 'none'}",
                details={**details, "allowed": allowed},
            )
        return self._index[state][action]  # type: ignore[attr-defined]

    def permission_for(self, action: str) -> Optional[str]:
        return self.permissions.get(action)

    def requires_reason(self, action: str) -> bool:
        return action in self.reason_required

    def requires_eligibility(self, action: str) -> bool:
        return action in self.eligibility_actions

    def sod_rules_for(self, action: str) -> List[SoDRule]:
        return [r for r in self.sod_rules if r.second_action == action]

    def describe(self) -> dict:
        """JSON-friendly description used by the catalogue endpoints."""
        return {
            "entity_type": self.entity_type,
            "label": self.label or self.entity_type,
            "initial_state": self.initial_state,
            "states": list(self.states),
            "final_states": sorted(self.final_states),
            "transitions": [
                {"from": t.source, "action": t.action, "to": t.target} for t in self.transitions
            ],
            "permissions": dict(self.permissions),
            "reason_required": sorted(self.reason_required),
            "eligibility_actions": sorted(self.eligibility_actions),
            "sod_rules": [
                {
                    "code": r.code,
                    "first_actions": list(r.first_actions),
                    "second_action": r.second_action,
                    "scope": r.scope,
                }
                for r in self.sod_rules
            ],
        }


class MachineRegistry:
    """Lookup of state machines by entity type."""

    def __init__(self, machines: Tuple[StateMachine, ...] = ()) -> None:
        self._machines: Dict[str, StateMachine] = {}
        for m in machines:
            self.register(m)

    def register(self, machine: StateMachine) -> StateMachine:
        if machine.entity_type in self._machines:
            raise ValueError(f"Machine for {machine.entity_type} already registered")
        self._machines[machine.entity_type] = machine
        return machine

    def get(self, entity_type: str) -> StateMachine:
        try:
            return self._machines[entity_type]
        except KeyError:
            raise UnknownEntityError(
                f"No state machine defined for {entity_type}",
                details={"known": sorted(self._machines)},
            )

    def entity_types(self) -> List[str]:
        return sorted(self._machines)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._machines

    def __iter__(self) -> Iterator[StateMachine]:
        return iter(self._machines[k] for k in sorted(self._machines))
