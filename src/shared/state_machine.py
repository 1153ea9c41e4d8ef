"""Validated state transitions for order lifecycles.

Each lifecycle declares a table of ``state -> allowed next states``. Terminal
states map to an empty set.
"""

from collections.abc import Mapping
from enum import StrEnum

from src.shared.exceptions import DuplicateTransitionAttempt, IllegalTransition

TransitionTable = Mapping[StrEnum, frozenset]


def transition(
    table: TransitionTable,
    current: StrEnum,
    target: StrEnum,
    entity: str = "order",
) -> StrEnum:
    """Return ``target`` if the move is allowed, raise otherwise.

    Re-requesting the state a record is already in raises
    DuplicateTransitionAttempt so callers can treat it as a no-op.
    """
    if current == target:
        raise DuplicateTransitionAttempt(entity, current.value, target.value, "already in state")
    allowed = table.get(current, frozenset())
    if target not in allowed:
        raise IllegalTransition(entity, current.value, target.value)
    return target


def is_terminal(table: TransitionTable, state: StrEnum) -> bool:
    return not table.get(state)
