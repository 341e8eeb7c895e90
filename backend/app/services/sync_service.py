"""
Service de synchronisation offline → online des actions terrain.

Pipeline, action par action (une action n'en bloque jamais une autre) :
1. Idempotence : un identifiant déjà journalisé renvoie le résultat enregistré,
   sans ré-exécuter le handler
2. Validation structurelle de l'enveloppe, puis du payload
3. Autorisation (rôle + appartenance)
4. Handler du type d'action (géofence comprise), dans la transaction
5. Commit + journal APPLIED ; ou rollback, puis journal REJECTED + sync_errors
   dans une seconde transaction indépendante

La clé primaire de sync_action_log tranche les livraisons concurrentes d'une
même action : le perdant reçoit une IntegrityError et est traité comme doublon.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.organization import Project
from app.models.sync_log import SyncActionLog, SyncError
from app.schemas.payloads import PAYLOAD_SCHEMAS
from app.schemas.sync import (
    ActionResult,
    ActionType,
    Actor,
    EntityType,
    SyncBatchResponse,
    SyncStatus,
    SyncSummary,
    ValidatedAction,
)
from app.services import attendance_service, dpr_service, material_request_service
from app.services.authorization_service import authorize
from app.services.sync_errors import (
    AuthorizationError,
    BusinessRuleError,
    InternalError,
    SyncActionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAX_ACTION_ID_LENGTH = 100

ActionHandler = Callable[[Session, Project, uuid.UUID, BaseModel], uuid.UUID]

ACTION_HANDLERS: Dict[ActionType, ActionHandler] = {
    ActionType.CHECK_IN: attendance_service.check_in,
    ActionType.CHECK_OUT: attendance_service.check_out,
    ActionType.TRACK: attendance_service.track,
    ActionType.MANUAL_ATTENDANCE: attendance_service.manual_attendance,
    ActionType.CREATE_MATERIAL_REQUEST: material_request_service.create_material_request,
    ActionType.UPDATE_MATERIAL_REQUEST: material_request_service.update_material_request,
    ActionType.DELETE_MATERIAL_REQUEST: material_request_service.delete_material_request,
    ActionType.CREATE_DPR: dpr_service.create_dpr,
}

_REQUIRED_FIELDS = (
    ("id", "Action ID"),
    ("action_type", "Action type"),
    ("entity_type", "Entity type"),
    ("project_id", "Project ID"),
)


# ============================================================
# Validation
# ============================================================

def validate_action(raw: Any) -> ValidatedAction:
    """
    Vérifie l'enveloppe d'une action brute.
    Lève ValidationError en nommant le premier champ absent ou invalide.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Action must be an object")

    for field, label in _REQUIRED_FIELDS:
        if raw.get(field) in (None, ""):
            raise ValidationError(f"{label} is required")

    payload = raw.get("payload")
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Payload is required and must be a non-empty object")

    action_id = raw["id"]
    if not isinstance(action_id, str) or len(action_id) > MAX_ACTION_ID_LENGTH:
        raise ValidationError(f"Action ID must be a string of at most {MAX_ACTION_ID_LENGTH} characters")

    try:
        action_type = ActionType(raw["action_type"])
    except ValueError:
        raise ValidationError(f"Invalid action type: {raw['action_type']}")

    try:
        entity_type = EntityType(raw["entity_type"])
    except ValueError:
        raise ValidationError(f"Invalid entity type: {raw['entity_type']}")

    try:
        project_id = uuid.UUID(str(raw["project_id"]))
    except ValueError:
        raise ValidationError(f"Invalid project ID: {raw['project_id']}")

    return ValidatedAction(
        id=action_id,
        action_type=action_type,
        entity_type=entity_type,
        project_id=project_id,
        payload=payload,
    )


def parse_payload(action: ValidatedAction) -> BaseModel:
    """Valide le payload avec le schéma de son type d'action."""
    schema = PAYLOAD_SCHEMAS[action.action_type]
    try:
        return schema.model_validate(action.payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        message = error["msg"].removeprefix("Value error, ")
        if field:
            raise ValidationError(f"Invalid payload field '{field}': {message}")
        # Erreur au niveau du modèle (ex. aucun champ à modifier) : message brut
        raise ValidationError(message)


# ============================================================
# Idempotence
# ============================================================

@dataclass(frozen=True)
class IdempotencyCheck:
    is_duplicate: bool
    prior_outcome: Optional[ActionResult] = None


def _outcome_from_log(log: SyncActionLog) -> ActionResult:
    return ActionResult(
        success=log.status == SyncStatus.APPLIED.value,
        action_id=log.id,
        action_type=log.action_type,
        entity_id=log.entity_id,
        error=log.error_message,
        error_code=log.error_code,
        status=log.status,
        duplicate=True,
    )


def check_idempotent(db: Session, action_id: str) -> IdempotencyCheck:
    """Lecture seule : renvoie le résultat déjà journalisé pour cet identifiant, s'il existe."""
    log = db.get(SyncActionLog, action_id)
    if log is None:
        return IdempotencyCheck(is_duplicate=False)
    return IdempotencyCheck(is_duplicate=True, prior_outcome=_outcome_from_log(log))


# ============================================================
# Journal
# ============================================================

def _as_text(value: Any, limit: int = 40) -> Optional[str]:
    if value is None:
        return None
    return str(value)[:limit]


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _payload_snapshot(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    payload = raw.get("payload")
    return payload if isinstance(payload, dict) else None


def _loggable_id(raw: Any) -> Optional[str]:
    """
    Clé sous laquelle journaliser l'action. Un identifiant numérique est
    journalisé sous sa forme texte pour que ses rejeux soient dédupliqués.
    """
    action_id = raw.get("id") if isinstance(raw, dict) else None
    if isinstance(action_id, int) and not isinstance(action_id, bool):
        action_id = str(action_id)
    if isinstance(action_id, str) and 0 < len(action_id) <= MAX_ACTION_ID_LENGTH:
        return action_id
    return None


def _log_entry(
    raw: Dict[str, Any],
    actor: Actor,
    status: SyncStatus,
    entity_id: Optional[uuid.UUID] = None,
    error: Optional[SyncActionError] = None,
    org_id: Optional[uuid.UUID] = None,
) -> SyncActionLog:
    return SyncActionLog(
        id=_loggable_id(raw),
        user_id=actor.id,
        user_role=actor.role,
        action_type=_as_text(raw.get("action_type")),
        entity_type=_as_text(raw.get("entity_type"), 30),
        entity_id=entity_id,
        project_id=_as_uuid(raw.get("project_id")),
        organization_id=org_id,
        payload=_payload_snapshot(raw),
        status=status.value,
        error_message=error.message if error else None,
        error_code=error.code if error else None,
    )


def _org_of(db: Session, raw: Dict[str, Any]) -> Optional[uuid.UUID]:
    project_id = _as_uuid(raw.get("project_id"))
    if project_id is None:
        return None
    project = db.get(Project, project_id)
    return project.org_id if project is not None else None


def _record_rejection(
    db: Session,
    raw: Dict[str, Any],
    actor: Actor,
    error: SyncActionError,
    org_id: Optional[uuid.UUID] = None,
) -> ActionResult:
    """
    Seconde transaction, après rollback de l'action : journal REJECTED + sync_errors.
    Un échec d'écriture est propagé (jamais masqué), sauf si une requête
    concurrente a entre-temps journalisé la même action.
    """
    action_id = _loggable_id(raw)
    try:
        if org_id is None:
            org_id = _org_of(db, raw)
        db.add(_log_entry(raw, actor, SyncStatus.REJECTED, error=error, org_id=org_id))
        db.flush()
        db.add(SyncError(
            sync_action_id=action_id,
            user_id=actor.id,
            reason=error.message,
            error_code=error.code,
            payload=_payload_snapshot(raw),
        ))
        db.commit()
    except IntegrityError:
        db.rollback()
        race = check_idempotent(db, action_id)
        if race.is_duplicate:
            return race.prior_outcome
        raise
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.warning(
        "Action %s (%s) rejetée [%s] : %s",
        action_id, raw.get("action_type"), error.code, error.message,
    )
    return ActionResult(
        success=False,
        action_id=action_id,
        action_type=_as_text(raw.get("action_type")),
        error=error.message,
        error_code=error.code,
        status=SyncStatus.REJECTED,
    )


# ============================================================
# Orchestrateur
# ============================================================

def apply_action(db: Session, raw: Dict[str, Any], actor: Actor) -> ActionResult:
    """
    Applique une action brute de façon atomique et journalise son résultat.

    Retourne le résultat {success, entity_id?, error?}. Une action rejetée est
    journalisée (sauf si elle n'a pas d'identifiant exploitable) ; une action
    déjà journalisée renvoie le résultat d'origine avec duplicate=True.
    """
    action_id = _loggable_id(raw)
    if action_id is None:
        error = ValidationError(
            f"Action ID is required and must be a string of at most {MAX_ACTION_ID_LENGTH} characters"
        )
        logger.warning("Action sans identifiant exploitable rejetée (non journalisée)")
        return ActionResult(
            success=False,
            action_type=_as_text(raw.get("action_type")) if isinstance(raw, dict) else None,
            error=error.message,
            error_code=error.code,
            status=SyncStatus.REJECTED,
        )

    gate = check_idempotent(db, action_id)
    if gate.is_duplicate:
        logger.debug("Action %s déjà traitée (%s), ignorée", action_id, gate.prior_outcome.status)
        return gate.prior_outcome

    org_id = None
    try:
        action = validate_action(raw)

        decision = authorize(db, actor.id, actor.role, action)
        if not decision.authorized:
            raise AuthorizationError(decision.reason)

        project = db.get(Project, action.project_id)
        if project is None:
            raise BusinessRuleError("Project not found")
        org_id = project.org_id

        payload = parse_payload(action)
        entity_id = ACTION_HANDLERS[action.action_type](db, project, actor.id, payload)

        db.add(_log_entry(raw, actor, SyncStatus.APPLIED, entity_id=entity_id, org_id=org_id))
        db.commit()
    except SyncActionError as exc:
        db.rollback()
        return _record_rejection(db, raw, actor, exc, org_id)
    except IntegrityError:
        db.rollback()
        race = check_idempotent(db, action_id)
        if race.is_duplicate:
            logger.warning("Action %s appliquée en parallèle par une autre requête", action_id)
            return race.prior_outcome
        logger.error("Conflit d'intégrité sur l'action %s", action_id, exc_info=True)
        return _record_rejection(
            db, raw, actor, InternalError("Conflicting concurrent update, action not applied"), org_id
        )
    except Exception:
        db.rollback()
        logger.error("Erreur inattendue sur l'action %s", action_id, exc_info=True)
        return _record_rejection(db, raw, actor, InternalError("Internal error while applying action"), org_id)

    logger.info("Action %s (%s) appliquée — entité %s", action_id, action.action_type.value, entity_id)
    return ActionResult(
        success=True,
        action_id=action_id,
        action_type=action.action_type.value,
        entity_id=entity_id,
        status=SyncStatus.APPLIED,
    )


def sync_actions(
    db: Session,
    actions: List[Dict[str, Any]],
    actor: Actor,
    device_id: str = "",
    allowed_types: Optional[FrozenSet[ActionType]] = None,
) -> SyncBatchResponse:
    """
    Applique un batch d'actions séquentiellement.

    Chaque action a sa propre transaction : un rejet n'interrompt jamais le batch.
    allowed_types restreint les types acceptés (endpoints dédiés à un rôle) ;
    les autres sont rejetés d'emblée, sans journalisation.
    """
    applied: List[ActionResult] = []
    rejected: List[ActionResult] = []
    skipped: List[ActionResult] = []
    allowed_values = {t.value for t in allowed_types} if allowed_types is not None else None

    for raw in actions:
        action_type = raw.get("action_type")
        # Un type non textuel (liste, objet) n'est jamais autorisé
        if allowed_values is not None and not (isinstance(action_type, str) and action_type in allowed_values):
            rejected.append(ActionResult(
                success=False,
                action_id=_as_text(raw.get("id"), MAX_ACTION_ID_LENGTH),
                action_type=_as_text(raw.get("action_type")),
                error="Action type not allowed for this role",
                error_code=AuthorizationError.code,
                status=SyncStatus.REJECTED,
            ))
            continue

        try:
            result = apply_action(db, raw, actor)
        except Exception:
            # Le rejet lui-même n'a pas pu être journalisé : l'erreur est remontée au client
            logger.error("Impossible de journaliser l'action %s", raw.get("id"), exc_info=True)
            result = ActionResult(
                success=False,
                action_id=_as_text(raw.get("id"), MAX_ACTION_ID_LENGTH),
                action_type=_as_text(raw.get("action_type")),
                error="Internal processing error",
                error_code=InternalError.code,
                status=SyncStatus.REJECTED,
            )

        if result.duplicate:
            skipped.append(result)
        elif result.success:
            applied.append(result)
        else:
            rejected.append(result)

    logger.info(
        "Sync acteur=%s device=%s : %d reçues, %d appliquées, %d rejetées, %d ignorées",
        actor.id, device_id or "inconnu", len(actions), len(applied), len(rejected), len(skipped),
    )

    return SyncBatchResponse(
        applied=applied,
        rejected=rejected,
        skipped=skipped,
        summary=SyncSummary(
            total=len(actions),
            applied_count=len(applied),
            rejected_count=len(rejected),
            skipped_count=len(skipped),
        ),
    )


# ============================================================
# Consultation du journal
# ============================================================

def get_action_log(db: Session, action_id: str) -> Optional[SyncActionLog]:
    return db.get(SyncActionLog, action_id)


def list_recent_errors(db: Session, user_id: uuid.UUID, limit: int = 50) -> List[SyncError]:
    """Derniers rejets d'un utilisateur, du plus récent au plus ancien."""
    return db.execute(
        select(SyncError)
        .where(SyncError.user_id == user_id)
        .order_by(SyncError.created_at.desc())
        .limit(limit)
    ).scalars().all()


def count_recent_errors(db: Session, minutes: int) -> List[Tuple[Optional[str], int]]:
    """Nombre de rejets par code d'erreur sur les `minutes` dernières minutes."""
    rows = db.execute(
        select(SyncError.error_code, func.count(SyncError.id))
        .where(SyncError.created_at >= func.now() - timedelta(minutes=minutes))
        .group_by(SyncError.error_code)
        .order_by(func.count(SyncError.id).desc())
    ).all()
    return [(code, count) for code, count in rows]
