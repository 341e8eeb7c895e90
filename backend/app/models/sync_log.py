"""
Modèles SQLAlchemy du journal de synchronisation offline.

- SyncActionLog : une ligne par identifiant d'action client, jamais modifiée.
  La clé primaire est la clé d'idempotence : deux livraisons concurrentes de
  la même action ne peuvent pas être commitées toutes les deux.
- SyncError     : diagnostic d'une action rejetée (triage opérateur).
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.database import Base


class SyncActionLog(Base):
    __tablename__ = "sync_action_log"

    id = Column(String(100), primary_key=True)   # Identifiant généré par le client
    user_id = Column(UUID(as_uuid=True), nullable=True)
    user_role = Column(String(30), nullable=True)
    action_type = Column(String(40), nullable=True)
    entity_type = Column(String(30), nullable=True)
    entity_id = Column(UUID(as_uuid=True), nullable=True)
    project_id = Column(UUID(as_uuid=True), nullable=True)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    payload = Column(JSONB, nullable=True)
    status = Column(String(20), nullable=False)  # APPLIED, REJECTED
    error_message = Column(Text, nullable=True)
    error_code = Column(String(40), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class SyncError(Base):
    __tablename__ = "sync_errors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sync_action_id = Column(String(100), ForeignKey("sync_action_log.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    reason = Column(Text, nullable=False)
    error_code = Column(String(40), nullable=True)   # ValidationError, GeofenceViolation, ...
    payload = Column(JSONB, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
