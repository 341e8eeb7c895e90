"""
Router pour la synchronisation offline → online des actions terrain.
Reçoit les actions enregistrées hors-ligne par l'app mobile (ouvriers et
ingénieurs de chantier) et les applique avec idempotence.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.sync import (
    Actor,
    ActorRole,
    SyncActionLogResponse,
    SyncBatchRequest,
    SyncBatchResponse,
    SyncErrorResponse,
)
from app.security import get_current_actor
from app.services import sync_service
from app.services.authorization_service import actions_for_role

router = APIRouter(prefix="/api/sync", tags=["Synchronisation offline"])


@router.post(
    "/batch",
    response_model=SyncBatchResponse,
    summary="Synchroniser un batch d'actions terrain (offline → online)",
)
def sync_batch(
    data: SyncBatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Reçoit un batch d'actions générées hors-ligne et les applique une par une.

    Comportement :
    - Idempotent : une action déjà journalisée est renvoyée dans `skipped` avec son statut d'origine
    - Chaque action a sa propre transaction : un rejet n'interrompt pas le batch
    - Retourne le rapport : actions appliquées / rejetées / ignorées + totaux
    """
    return sync_service.sync_actions(db, data.actions, actor, data.device_id)


@router.post(
    "/labour",
    response_model=SyncBatchResponse,
    summary="Synchroniser les pointages et pings d'un ouvrier",
)
def sync_labour(
    data: SyncBatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Réservé aux ouvriers : CHECK_IN, CHECK_OUT et TRACK uniquement."""
    if actor.role != ActorRole.LABOUR.value:
        raise HTTPException(status_code=403, detail="Réservé aux ouvriers.")
    return sync_service.sync_actions(
        db, data.actions, actor, data.device_id, allowed_types=actions_for_role(ActorRole.LABOUR),
    )


@router.post(
    "/engineer",
    response_model=SyncBatchResponse,
    summary="Synchroniser les actions d'un ingénieur de chantier",
)
def sync_engineer(
    data: SyncBatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Réservé aux ingénieurs : demandes de matériel, DPR et présences manuelles."""
    if actor.role != ActorRole.SITE_ENGINEER.value:
        raise HTTPException(status_code=403, detail="Réservé aux ingénieurs de chantier.")
    return sync_service.sync_actions(
        db, data.actions, actor, data.device_id, allowed_types=actions_for_role(ActorRole.SITE_ENGINEER),
    )


@router.get(
    "/actions/{action_id}",
    response_model=SyncActionLogResponse,
    summary="Résultat journalisé d'une action",
)
def get_action(
    action_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Permet au client de retrouver le résultat d'une action dont la réponse a été perdue."""
    log = sync_service.get_action_log(db, action_id)
    if log is None or log.user_id != actor.id:
        raise HTTPException(status_code=404, detail="Action introuvable.")
    return log


@router.get(
    "/errors",
    response_model=List[SyncErrorResponse],
    summary="Derniers rejets de l'utilisateur",
)
def list_errors(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return sync_service.list_recent_errors(db, actor.id, limit)
