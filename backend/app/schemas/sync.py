"""
Schémas Pydantic pour la synchronisation offline → online des actions terrain.
Endpoints : POST /api/sync/batch, /api/sync/labour, /api/sync/engineer

Les actions arrivent sous forme de dictionnaires bruts : la validation
structurelle est faite action par action par le service de synchronisation,
pour qu'une action mal formée soit journalisée REJECTED sans faire échouer
tout le batch.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from app.config import settings


class ActionType(str, Enum):
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"
    CREATE_MATERIAL_REQUEST = "CREATE_MATERIAL_REQUEST"
    UPDATE_MATERIAL_REQUEST = "UPDATE_MATERIAL_REQUEST"
    DELETE_MATERIAL_REQUEST = "DELETE_MATERIAL_REQUEST"
    CREATE_DPR = "CREATE_DPR"
    MANUAL_ATTENDANCE = "MANUAL_ATTENDANCE"
    TRACK = "TRACK"


class EntityType(str, Enum):
    ATTENDANCE = "ATTENDANCE"
    MATERIAL_REQUEST = "MATERIAL_REQUEST"
    DPR = "DPR"


class ActorRole(str, Enum):
    LABOUR = "LABOUR"
    SITE_ENGINEER = "SITE_ENGINEER"


class SyncStatus(str, Enum):
    APPLIED = "APPLIED"
    REJECTED = "REJECTED"


class Actor(BaseModel):
    """Utilisateur authentifié qui soumet le batch (extrait du jeton)."""
    id: uuid.UUID
    role: str


class ValidatedAction(BaseModel):
    """Action terrain après validation structurelle."""
    id: str                      # Clé d'idempotence générée par le client
    action_type: ActionType
    entity_type: EntityType
    project_id: uuid.UUID
    payload: Dict[str, Any]


class SyncBatchRequest(BaseModel):
    """Corps de la requête batch de synchronisation."""

    actions: List[Dict[str, Any]]
    device_id: str = ""           # Identifiant de l'appareil (journalisation uniquement)

    @field_validator("actions")
    @classmethod
    def batch_size_in_bounds(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not v:
            raise ValueError("Le batch doit contenir au moins une action.")
        if len(v) > settings.SYNC_MAX_BATCH_SIZE:
            raise ValueError(
                f"Batch trop grand : maximum {settings.SYNC_MAX_BATCH_SIZE} actions par requête."
            )
        return v


class ActionResult(BaseModel):
    """Résultat d'une action : {success, entity_id?, error?} plus le contexte de l'action."""

    success: bool
    action_id: Optional[str] = None
    action_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    error: Optional[str] = None
    error_code: Optional[str] = None   # Nom de l'erreur (AuthorizationError, Blacklisted, ...)
    status: Optional[SyncStatus] = None
    duplicate: bool = False            # True si le résultat provient du journal (rejeu)


class SyncSummary(BaseModel):
    total: int
    applied_count: int
    rejected_count: int
    skipped_count: int


class SyncBatchResponse(BaseModel):
    """Rapport de synchronisation retourné par le serveur."""

    applied: List[ActionResult]
    rejected: List[ActionResult]
    skipped: List[ActionResult]      # Actions déjà traitées (idempotence)
    summary: SyncSummary


class SyncActionLogResponse(BaseModel):
    id: str
    user_id: Optional[uuid.UUID]
    user_role: Optional[str]
    action_type: Optional[str]
    entity_type: Optional[str]
    entity_id: Optional[uuid.UUID]
    project_id: Optional[uuid.UUID]
    status: str
    error_message: Optional[str]
    error_code: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class SyncErrorResponse(BaseModel):
    id: uuid.UUID
    sync_action_id: str
    user_id: Optional[uuid.UUID]
    reason: str
    error_code: Optional[str]
    payload: Optional[Dict[str, Any]]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}
