"""
Handler CREATE_DPR : rapport journalier d'avancement saisi hors-ligne.
"""

import uuid

from sqlalchemy.orm import Session

from app.models.dpr import Dpr
from app.models.organization import Project
from app.schemas.payloads import CreateDprPayload


def create_dpr(db: Session, project: Project, engineer_id: uuid.UUID, payload: CreateDprPayload) -> uuid.UUID:
    dpr = Dpr(
        id=uuid.uuid4(),
        project_id=project.id,
        site_engineer_id=engineer_id,
        title=payload.title,
        description=payload.description,
        report_date=payload.report_date,
        work_done=payload.work_done,
        materials_used=payload.materials_used,
        manpower_deployed=payload.manpower_deployed,
    )
    db.add(dpr)
    return dpr.id
