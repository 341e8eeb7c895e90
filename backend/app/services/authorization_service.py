"""
Matrice d'autorisation des actions synchronisées.

Table de correspondance type d'action → (rôle requis, vérification d'appartenance).
Ajouter un type d'action = ajouter une ligne à AUTHORIZATION_RULES.
Tout type absent de la table est refusé.
"""

import uuid
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.organization import Labour, ProjectSiteEngineer
from app.schemas.sync import ActionType, ActorRole, ValidatedAction

# Retourne None si l'acteur satisfait la condition, sinon le motif du refus
MembershipCheck = Callable[[Session, uuid.UUID, ValidatedAction], Optional[str]]


def _labour_exists(db: Session, actor_id: uuid.UUID, action: ValidatedAction) -> Optional[str]:
    if db.get(Labour, actor_id) is None:
        return "Labour not found"
    return None


def _active_engineer_on_project(db: Session, actor_id: uuid.UUID, action: ValidatedAction) -> Optional[str]:
    # Affectation au projet précis, pas seulement à l'organisation
    assignment = db.execute(
        select(ProjectSiteEngineer.id).where(
            ProjectSiteEngineer.site_engineer_id == actor_id,
            ProjectSiteEngineer.project_id == action.project_id,
            ProjectSiteEngineer.status == "ACTIVE",
        )
    ).scalar()
    if assignment is None:
        return "Not an active engineer in this project"
    return None


@dataclass(frozen=True)
class AuthorizationRule:
    role: ActorRole
    membership: MembershipCheck


@dataclass(frozen=True)
class AuthorizationDecision:
    authorized: bool
    reason: Optional[str] = None


LABOUR_RULE = AuthorizationRule(ActorRole.LABOUR, _labour_exists)
ENGINEER_RULE = AuthorizationRule(ActorRole.SITE_ENGINEER, _active_engineer_on_project)

AUTHORIZATION_RULES: Dict[ActionType, AuthorizationRule] = {
    ActionType.CHECK_IN: LABOUR_RULE,
    ActionType.CHECK_OUT: LABOUR_RULE,
    ActionType.TRACK: LABOUR_RULE,
    ActionType.CREATE_MATERIAL_REQUEST: ENGINEER_RULE,
    ActionType.UPDATE_MATERIAL_REQUEST: ENGINEER_RULE,
    ActionType.DELETE_MATERIAL_REQUEST: ENGINEER_RULE,
    ActionType.CREATE_DPR: ENGINEER_RULE,
    ActionType.MANUAL_ATTENDANCE: ENGINEER_RULE,
}

ROLE_DENIALS = {
    ActorRole.LABOUR: "Only labours can perform this action",
    ActorRole.SITE_ENGINEER: "Only site engineers can perform this action",
}


def actions_for_role(role: ActorRole) -> FrozenSet[ActionType]:
    """Types d'action qu'un rôle peut soumettre (filtre des endpoints dédiés)."""
    return frozenset(t for t, rule in AUTHORIZATION_RULES.items() if rule.role == role)


def authorize(db: Session, actor_id: uuid.UUID, actor_role: str, action: ValidatedAction) -> AuthorizationDecision:
    rule = AUTHORIZATION_RULES.get(action.action_type)
    if rule is None:
        return AuthorizationDecision(False, "Unknown action type")

    if actor_role != rule.role.value:
        return AuthorizationDecision(False, ROLE_DENIALS[rule.role])

    reason = rule.membership(db, actor_id, action)
    if reason is not None:
        return AuthorizationDecision(False, reason)
    return AuthorizationDecision(True)
