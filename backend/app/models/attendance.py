"""
Modèles SQLAlchemy pour les présences des ouvriers sur chantier.

- Attendance        : une ligne par (ouvrier, projet, jour)
- AttendanceSession : intervalle continu passé à l'intérieur de la géofence
- OrganizationBlacklist : ouvrier écarté après trop de sorties de la géofence
"""

import uuid
from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class Attendance(Base):
    """Présence journalière. Créée au CHECK_IN, mise à jour par TRACK, clôturée au CHECK_OUT."""
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("labour_id", "project_id", "attendance_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    labour_id = Column(UUID(as_uuid=True), ForeignKey("labours.id", ondelete="CASCADE"), nullable=False)
    site_engineer_id = Column(UUID(as_uuid=True), ForeignKey("site_engineers.id"), nullable=True)  # Saisie manuelle
    attendance_date = Column(Date, nullable=False)

    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)
    work_hours = Column(Float, nullable=True)
    status = Column(String(20), default="PRESENT")   # PRESENT, APPROVED
    source = Column(String(20), default="ONLINE")    # ONLINE, OFFLINE_SYNC
    is_manual = Column(Boolean, default=False)
    approved_by = Column(UUID(as_uuid=True), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # État du suivi géofence (TRACK)
    entry_exit_count = Column(Integer, default=0)
    max_allowed_exits = Column(Integer, default=3)
    is_currently_breached = Column(Boolean, default=False)   # Dernier état connu : hors zone
    last_known_lat = Column(Float, nullable=True)
    last_known_lng = Column(Float, nullable=True)
    last_event_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())


class AttendanceSession(Base):
    """Intervalle de travail dans la géofence. check_out_time NULL = session ouverte."""
    __tablename__ = "attendance_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    attendance_id = Column(UUID(as_uuid=True), ForeignKey("attendance.id", ondelete="CASCADE"), nullable=False)
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime, nullable=True)
    worked_minutes = Column(Float, nullable=True)


class OrganizationBlacklist(Base):
    """Une seule ligne par (organisation, ouvrier). Lue par les vues manager/owner."""
    __tablename__ = "organization_blacklist"
    __table_args__ = (UniqueConstraint("org_id", "labour_id", name="uq_blacklist_org_labour"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    labour_id = Column(UUID(as_uuid=True), ForeignKey("labours.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
