"""
Machine à états du suivi de présence (pings TRACK).

Deux états par ligne de présence : INSIDE / OUTSIDE (colonne is_currently_breached).
- INSIDE → OUTSIDE : la session ouverte est fermée, le compteur de sorties
  augmente ; au-delà du quota l'ouvrier est mis en liste noire.
- OUTSIDE → INSIDE : une nouvelle session s'ouvre, seulement tant que le
  quota de sorties n'est pas dépassé.
- Même état : rien à faire hors mise à jour de la position.

Aucune dépendance à la base : la persistance est faite par attendance_service.
"""

from dataclasses import dataclass
from enum import Enum


class BreachState(str, Enum):
    INSIDE = "INSIDE"
    OUTSIDE = "OUTSIDE"


class SessionAction(str, Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    CLOSE = "CLOSE"


@dataclass(frozen=True)
class Transition:
    new_state: BreachState
    session_action: SessionAction
    exit_count: int
    blacklist: bool = False


def state_of(is_currently_breached) -> BreachState:
    return BreachState.OUTSIDE if is_currently_breached else BreachState.INSIDE


def next_transition(
    current: BreachState,
    is_inside: bool,
    exit_count: int,
    max_allowed_exits: int,
) -> Transition:
    new_state = BreachState.INSIDE if is_inside else BreachState.OUTSIDE

    if current == BreachState.INSIDE and new_state == BreachState.OUTSIDE:
        exit_count += 1
        return Transition(
            new_state=new_state,
            session_action=SessionAction.CLOSE,
            exit_count=exit_count,
            blacklist=exit_count > max_allowed_exits,
        )

    if current == BreachState.OUTSIDE and new_state == BreachState.INSIDE:
        # Quota dépassé : l'ouvrier reste bloqué pour la journée sans check-out formel
        action = SessionAction.OPEN if exit_count <= max_allowed_exits else SessionAction.NONE
        return Transition(new_state=new_state, session_action=action, exit_count=exit_count)

    return Transition(new_state=new_state, session_action=SessionAction.NONE, exit_count=exit_count)
