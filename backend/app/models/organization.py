"""
Modèles SQLAlchemy des référentiels possédés par les autres modules
(organisations, projets, ouvriers, ingénieurs de chantier).

Le moteur de synchronisation ne fait que les lire : définition de la géofence
d'un projet, existence d'un ouvrier, affectation active d'un ingénieur.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Project(Base):
    """Chantier. Porte la géofence : JSON structuré prioritaire, sinon ancrage + rayon."""
    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)

    latitude = Column(Float, nullable=True)          # Point d'ancrage (champs historiques)
    longitude = Column(Float, nullable=True)
    geofence_radius = Column(Float, nullable=True)   # Mètres
    geofence = Column(JSONB, nullable=True)          # CIRCLE, POLYGON ou Feature GeoJSON

    created_at = Column(DateTime, server_default=func.now())


class Labour(Base):
    __tablename__ = "labours"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    skill_type = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class SiteEngineer(Base):
    __tablename__ = "site_engineers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ProjectSiteEngineer(Base):
    """Affectation d'un ingénieur à un projet précis."""
    __tablename__ = "project_site_engineers"
    __table_args__ = (UniqueConstraint("project_id", "site_engineer_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    site_engineer_id = Column(UUID(as_uuid=True), ForeignKey("site_engineers.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="PENDING")  # PENDING, ACTIVE, REMOVED
    assigned_at = Column(DateTime, server_default=func.now())
