"""
Handlers des demandes de matériel synchronisées depuis l'app ingénieur.
Un ingénieur ne modifie ou ne supprime que ses propres demandes PENDING.
"""

import uuid
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.material_request import MaterialRequest
from app.models.organization import Project
from app.schemas.payloads import (
    CreateMaterialRequestPayload,
    DeleteMaterialRequestPayload,
    UpdateMaterialRequestPayload,
)
from app.services.sync_errors import BusinessRuleError

logger = logging.getLogger(__name__)


def _owned_request(
    db: Session, project: Project, engineer_id: uuid.UUID, request_id: uuid.UUID
) -> MaterialRequest:
    request = db.execute(
        select(MaterialRequest)
        .where(
            MaterialRequest.id == request_id,
            MaterialRequest.project_id == project.id,
            MaterialRequest.site_engineer_id == engineer_id,
        )
        .with_for_update()
    ).scalar()
    if request is None:
        raise BusinessRuleError("Material request not found or not owned by you")
    return request


def create_material_request(
    db: Session, project: Project, engineer_id: uuid.UUID, payload: CreateMaterialRequestPayload
) -> uuid.UUID:
    request = MaterialRequest(
        id=uuid.uuid4(),
        project_id=project.id,
        site_engineer_id=engineer_id,
        title=payload.title,
        category=payload.category,
        quantity=payload.quantity,
        description=payload.description,
        status="PENDING",
    )
    db.add(request)
    logger.info("Demande de matériel créée : %s (%s) — projet %s", request.title, request.id, project.id)
    return request.id


def update_material_request(
    db: Session, project: Project, engineer_id: uuid.UUID, payload: UpdateMaterialRequestPayload
) -> uuid.UUID:
    """Seuls les champs fournis sont modifiés."""
    request = _owned_request(db, project, engineer_id, payload.request_id)
    if request.status != "PENDING":
        raise BusinessRuleError("Can only update PENDING requests")

    for field, value in payload.changes().items():
        setattr(request, field, value)

    return request.id


def delete_material_request(
    db: Session, project: Project, engineer_id: uuid.UUID, payload: DeleteMaterialRequestPayload
) -> uuid.UUID:
    request = _owned_request(db, project, engineer_id, payload.request_id)
    if request.status != "PENDING":
        raise BusinessRuleError("Can only delete PENDING requests")

    db.delete(request)
    logger.info("Demande de matériel supprimée : %s — projet %s", request.id, project.id)
    return request.id
