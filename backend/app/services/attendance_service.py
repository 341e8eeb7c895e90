"""
Handlers des actions de présence synchronisées depuis l'app mobile :
CHECK_IN, CHECK_OUT, TRACK (ouvrier) et MANUAL_ATTENDANCE (ingénieur).

Chaque handler travaille dans la transaction ouverte par l'orchestrateur
(sync_service) : il ne commit jamais et lève une SyncActionError pour que
l'action entière soit annulée.
La ligne de présence est verrouillée (SELECT ... FOR UPDATE) pour que deux
pings concurrents du même ouvrier soient traités l'un après l'autre.
"""

import uuid
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.config import settings
from app.models.attendance import Attendance, AttendanceSession, OrganizationBlacklist
from app.models.organization import Labour, Project
from app.schemas.payloads import (
    CheckInPayload,
    CheckOutPayload,
    LocationPayload,
    ManualAttendancePayload,
    TrackPayload,
)
from app.services import geofence_service
from app.services.attendance_tracker import BreachState, SessionAction, next_transition, state_of
from app.services.sync_errors import (
    Blacklisted,
    BusinessRuleError,
    GeofenceViolation,
    NegativeDurationError,
    NoActiveSession,
)

logger = logging.getLogger(__name__)

BLACKLIST_REASON = "Exceeded maximum allowed exits"


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def _require_inside(project: Project, payload: LocationPayload) -> None:
    result = geofence_service.evaluate(project, payload.latitude, payload.longitude)
    if not result.is_inside:
        raise GeofenceViolation(result.distance_meters, result.allowed_radius)


def _ensure_not_blacklisted(db: Session, org_id: uuid.UUID, labour_id: uuid.UUID) -> None:
    """Refuse l'action si l'ouvrier a été mis en liste noire il y a moins de BLACKLIST_COOLDOWN_DAYS."""
    entry = db.execute(
        select(OrganizationBlacklist.id).where(
            OrganizationBlacklist.org_id == org_id,
            OrganizationBlacklist.labour_id == labour_id,
            OrganizationBlacklist.created_at > func.now() - timedelta(days=settings.BLACKLIST_COOLDOWN_DAYS),
        )
    ).scalar()
    if entry:
        raise Blacklisted("Labour is currently blacklisted")


def _lock_attendance(
    db: Session, labour_id: uuid.UUID, project_id: uuid.UUID, attendance_date: date
) -> Optional[Attendance]:
    return db.execute(
        select(Attendance)
        .where(
            Attendance.labour_id == labour_id,
            Attendance.project_id == project_id,
            Attendance.attendance_date == attendance_date,
        )
        .with_for_update()
    ).scalar()


def _open_session(db: Session, attendance_id: uuid.UUID) -> Optional[AttendanceSession]:
    return db.execute(
        select(AttendanceSession)
        .where(
            AttendanceSession.attendance_id == attendance_id,
            AttendanceSession.check_out_time.is_(None),
        )
        .order_by(AttendanceSession.check_in_time.desc())
        .limit(1)
    ).scalar()


def _close_session(session: AttendanceSession, at: datetime) -> None:
    # Un ping hors séquence peut être antérieur à l'ouverture : jamais de durée négative
    minutes = (at - session.check_in_time).total_seconds() / 60
    session.check_out_time = at
    session.worked_minutes = max(0.0, minutes)


def _closed_minutes(db: Session, attendance_id: uuid.UUID) -> float:
    total = db.execute(
        select(func.coalesce(func.sum(AttendanceSession.worked_minutes), 0)).where(
            AttendanceSession.attendance_id == attendance_id,
            AttendanceSession.check_out_time.isnot(None),
        )
    ).scalar()
    return float(total or 0)


def _blacklist(db: Session, org_id: uuid.UUID, labour_id: uuid.UUID) -> None:
    """Insertion idempotente : une seule ligne par (organisation, ouvrier)."""
    db.execute(
        insert(OrganizationBlacklist)
        .values(id=uuid.uuid4(), org_id=org_id, labour_id=labour_id, reason=BLACKLIST_REASON)
        .on_conflict_do_nothing(index_elements=["org_id", "labour_id"])
    )


# ----------------------------------------------------------------
# CHECK_IN
# ----------------------------------------------------------------

def check_in(db: Session, project: Project, labour_id: uuid.UUID, payload: CheckInPayload) -> uuid.UUID:
    """
    Pointage d'arrivée.

    1. Refus si l'ouvrier est en liste noire dans l'organisation
    2. Refus si la position est hors géofence
    3. Refus si une présence existe déjà pour ce jour
    4. Crée la présence et ouvre la première session dans la géofence
    """
    _ensure_not_blacklisted(db, project.org_id, labour_id)
    _require_inside(project, payload)

    attendance_date = payload.timestamp.date()
    existing = _lock_attendance(db, labour_id, project.id, attendance_date)
    if existing is not None:
        if existing.check_in_time is not None:
            raise BusinessRuleError("Already checked in")
        raise BusinessRuleError("Attendance already recorded for this date")

    attendance = Attendance(
        id=uuid.uuid4(),
        project_id=project.id,
        labour_id=labour_id,
        attendance_date=attendance_date,
        check_in_time=payload.timestamp,
        status="PRESENT",
        source="OFFLINE_SYNC",
        is_manual=False,
        entry_exit_count=0,
        max_allowed_exits=settings.DEFAULT_MAX_ALLOWED_EXITS,
        is_currently_breached=False,
        last_known_lat=payload.latitude,
        last_known_lng=payload.longitude,
        last_event_at=payload.timestamp,
    )
    db.add(attendance)
    db.flush()
    db.add(AttendanceSession(attendance_id=attendance.id, check_in_time=payload.timestamp))

    logger.info("Check-in ouvrier %s — projet %s (%s)", labour_id, project.id, attendance_date)
    return attendance.id


# ----------------------------------------------------------------
# CHECK_OUT
# ----------------------------------------------------------------

def check_out(db: Session, project: Project, labour_id: uuid.UUID, payload: CheckOutPayload) -> uuid.UUID:
    """
    Pointage de départ : work_hours = sortie - entrée.
    Ferme la session encore ouverte. Refusé si la sortie précède l'entrée.
    """
    _require_inside(project, payload)

    attendance = _lock_attendance(db, labour_id, project.id, payload.timestamp.date())
    if attendance is None or attendance.check_in_time is None:
        raise BusinessRuleError("No check-in found for today")
    if attendance.check_out_time is not None:
        raise BusinessRuleError("Already checked out")
    if payload.timestamp < attendance.check_in_time:
        raise NegativeDurationError("Check-out time cannot be before check-in time")

    session = _open_session(db, attendance.id)
    if session is not None:
        _close_session(session, payload.timestamp)

    attendance.check_out_time = payload.timestamp
    attendance.work_hours = (payload.timestamp - attendance.check_in_time).total_seconds() / 3600
    attendance.source = "OFFLINE_SYNC"
    attendance.last_known_lat = payload.latitude
    attendance.last_known_lng = payload.longitude
    attendance.last_event_at = payload.timestamp

    logger.info(
        "Check-out ouvrier %s — projet %s : %.2f h", labour_id, project.id, attendance.work_hours,
    )
    return attendance.id


# ----------------------------------------------------------------
# MANUAL_ATTENDANCE
# ----------------------------------------------------------------

def manual_attendance(
    db: Session, project: Project, engineer_id: uuid.UUID, payload: ManualAttendancePayload
) -> uuid.UUID:
    """Présence saisie par l'ingénieur, approuvée d'office (pas d'étape de revue)."""
    if db.get(Labour, payload.labour_id) is None:
        raise BusinessRuleError("Labour not found")

    existing = db.execute(
        select(Attendance.id).where(
            Attendance.labour_id == payload.labour_id,
            Attendance.project_id == project.id,
            Attendance.attendance_date == payload.attendance_date,
        )
    ).scalar()
    if existing:
        raise BusinessRuleError("Attendance already exists for this date")

    attendance = Attendance(
        id=uuid.uuid4(),
        project_id=project.id,
        labour_id=payload.labour_id,
        site_engineer_id=engineer_id,
        attendance_date=payload.attendance_date,
        work_hours=payload.work_hours,
        status="APPROVED",
        source="OFFLINE_SYNC",
        is_manual=True,
        approved_by=engineer_id,
        approved_at=datetime.now(timezone.utc).replace(tzinfo=None),
        entry_exit_count=0,
        max_allowed_exits=settings.DEFAULT_MAX_ALLOWED_EXITS,
        is_currently_breached=False,
    )
    db.add(attendance)
    return attendance.id


# ----------------------------------------------------------------
# TRACK
# ----------------------------------------------------------------

def track(db: Session, project: Project, labour_id: uuid.UUID, payload: TrackPayload) -> uuid.UUID:
    """
    Ping de position continu.

    1. Présence ouverte du jour obligatoire (NoActiveSession sinon) ; un ping
       antérieur au dernier événement enregistré est refusé (BusinessRuleError)
    2. Refus si l'ouvrier est en liste noire (Blacklisted)
    3. La géofence détermine l'état INSIDE / OUTSIDE
    4. Sortie : ferme la session, +1 sortie, recalcule work_hours, liste noire au-delà du quota
    5. Retour : ouvre une session tant que le quota n'est pas dépassé
    6. Position, état et compteur sont toujours enregistrés
    """
    attendance = _lock_attendance(db, labour_id, project.id, payload.timestamp.date())
    if attendance is None or attendance.check_in_time is None or attendance.check_out_time is not None:
        raise NoActiveSession("No active attendance session found for the given date")
    if attendance.last_event_at is not None and payload.timestamp < attendance.last_event_at:
        raise BusinessRuleError("Out-of-order ping: older than the last recorded event")

    _ensure_not_blacklisted(db, project.org_id, labour_id)

    result = geofence_service.evaluate(project, payload.latitude, payload.longitude)
    max_exits = attendance.max_allowed_exits or settings.DEFAULT_MAX_ALLOWED_EXITS
    transition = next_transition(
        state_of(attendance.is_currently_breached),
        result.is_inside,
        attendance.entry_exit_count or 0,
        max_exits,
    )

    if transition.session_action == SessionAction.CLOSE:
        session = _open_session(db, attendance.id)
        if session is not None:
            _close_session(session, payload.timestamp)
            db.flush()
        attendance.work_hours = _closed_minutes(db, attendance.id) / 60
        logger.info(
            "Sortie de géofence — ouvrier %s, projet %s : %d/%d sorties (%sm)",
            labour_id, project.id, transition.exit_count, max_exits, result.distance_meters,
        )
        if transition.blacklist:
            _blacklist(db, project.org_id, labour_id)
            logger.warning(
                "Ouvrier %s mis en liste noire (organisation %s) : quota de %d sorties dépassé",
                labour_id, project.org_id, max_exits,
            )

    elif transition.session_action == SessionAction.OPEN:
        if _open_session(db, attendance.id) is None:
            db.add(AttendanceSession(attendance_id=attendance.id, check_in_time=payload.timestamp))
        logger.info("Retour dans la géofence — ouvrier %s, projet %s", labour_id, project.id)

    attendance.last_known_lat = payload.latitude
    attendance.last_known_lng = payload.longitude
    attendance.is_currently_breached = transition.new_state == BreachState.OUTSIDE
    attendance.entry_exit_count = transition.exit_count
    attendance.last_event_at = payload.timestamp

    return attendance.id
