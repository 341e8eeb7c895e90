"""
Modèle SQLAlchemy pour les rapports journaliers d'avancement (DPR).
"""

import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class Dpr(Base):
    __tablename__ = "dprs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    site_engineer_id = Column(UUID(as_uuid=True), ForeignKey("site_engineers.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, default="")
    report_date = Column(Date, nullable=False)
    work_done = Column(Text, default="")
    materials_used = Column(Text, default="")
    manpower_deployed = Column(Text, default="")
    submitted_at = Column(DateTime, server_default=func.now())
