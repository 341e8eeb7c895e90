"""
Tests unitaires des handlers de présence (CHECK_IN, CHECK_OUT, TRACK, MANUAL_ATTENDANCE).
La session SQLAlchemy est mockée : chaque db.execute() renvoie, dans l'ordre,
le résultat attendu par le handler.
"""

import uuid
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.models.attendance import Attendance, AttendanceSession
from app.models.organization import Project
from app.schemas.payloads import (
    CheckInPayload,
    CheckOutPayload,
    ManualAttendancePayload,
    TrackPayload,
)
from app.services import attendance_service
from app.services.sync_errors import (
    Blacklisted,
    BusinessRuleError,
    GeofenceViolation,
    NegativeDurationError,
    NoActiveSession,
)

LABOUR_ID = uuid.uuid4()
ENGINEER_ID = uuid.uuid4()
DAY = date(2026, 3, 2)
FAR_AWAY = 0.01    # ~1,1 km du point d'ancrage


def at(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute)


def result(value):
    """Résultat de db.execute() dont .scalar() renvoie value."""
    r = MagicMock()
    r.scalar.return_value = value
    return r


def make_project(radius=500):
    p = MagicMock(spec=Project)
    p.id = uuid.uuid4()
    p.org_id = uuid.uuid4()
    p.latitude = 0.0
    p.longitude = 0.0
    p.geofence_radius = radius
    p.geofence = None
    return p


def make_attendance(check_in=at(8), check_out=None, breached=False, exits=0, max_exits=3, last_event=None):
    return Attendance(
        id=uuid.uuid4(),
        labour_id=LABOUR_ID,
        attendance_date=DAY,
        check_in_time=check_in,
        check_out_time=check_out,
        is_currently_breached=breached,
        entry_exit_count=exits,
        max_allowed_exits=max_exits,
        last_event_at=last_event,
    )


def added(db, model):
    return [c[0][0] for c in db.add.call_args_list if isinstance(c[0][0], model)]


def compiled(db, call_index):
    """SQL PostgreSQL de la requête passée au n-ième db.execute()."""
    stmt = db.execute.call_args_list[call_index][0][0]
    return str(stmt.compile(dialect=postgresql.dialect()))


# ============================================================
# CHECK_IN
# ============================================================

class TestCheckIn:
    def test_scenario_a_point_ancrage(self):
        """Scénario A : check-in à (0, 0), géofence de 500 m → présence ouverte."""
        db = MagicMock()
        db.execute.side_effect = [result(None), result(None)]  # liste noire, présence du jour
        payload = CheckInPayload(latitude=0, longitude=0, timestamp=at(8))

        attendance_id = attendance_service.check_in(db, make_project(), LABOUR_ID, payload)

        attendance = added(db, Attendance)[0]
        session = added(db, AttendanceSession)[0]
        assert attendance.id == attendance_id
        assert attendance.check_in_time == at(8)
        assert attendance.check_out_time is None
        assert attendance.attendance_date == DAY
        assert attendance.entry_exit_count == 0
        assert attendance.is_currently_breached is False
        assert session.attendance_id == attendance_id
        assert session.check_out_time is None
        db.flush.assert_called_once()
        db.commit.assert_not_called()

    def test_hors_geofence(self):
        db = MagicMock()
        db.execute.side_effect = [result(None)]
        payload = CheckInPayload(latitude=0, longitude=FAR_AWAY, timestamp=at(8))

        with pytest.raises(GeofenceViolation) as exc:
            attendance_service.check_in(db, make_project(radius=100), LABOUR_ID, payload)

        assert exc.value.allowed_radius == 100
        assert exc.value.distance_meters > 100
        assert exc.value.message.startswith("Outside geofence:")
        db.add.assert_not_called()

    def test_scenario_b_deja_pointe(self):
        """Scénario B : présence du jour déjà ouverte → règle métier."""
        db = MagicMock()
        db.execute.side_effect = [result(None), result(make_attendance())]
        payload = CheckInPayload(latitude=0, longitude=0, timestamp=at(9))

        with pytest.raises(BusinessRuleError, match="Already checked in"):
            attendance_service.check_in(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()

    def test_presence_manuelle_existante(self):
        db = MagicMock()
        db.execute.side_effect = [result(None), result(make_attendance(check_in=None))]
        payload = CheckInPayload(latitude=0, longitude=0, timestamp=at(9))

        with pytest.raises(BusinessRuleError, match="Attendance already recorded"):
            attendance_service.check_in(db, make_project(), LABOUR_ID, payload)

    def test_ouvrier_en_liste_noire(self):
        db = MagicMock()
        db.execute.side_effect = [result(uuid.uuid4())]
        payload = CheckInPayload(latitude=0, longitude=0, timestamp=at(8))

        with pytest.raises(Blacklisted):
            attendance_service.check_in(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()

    def test_horodatage_avec_fuseau_converti_en_utc(self):
        db = MagicMock()
        db.execute.side_effect = [result(None), result(None)]
        payload = CheckInPayload(latitude=0, longitude=0, timestamp="2026-03-02T23:30:00-02:00")

        attendance_service.check_in(db, make_project(), LABOUR_ID, payload)

        attendance = added(db, Attendance)[0]
        assert attendance.check_in_time == datetime(2026, 3, 3, 1, 30)
        assert attendance.attendance_date == date(2026, 3, 3)


# ============================================================
# CHECK_OUT
# ============================================================

class TestCheckOut:
    def test_check_out_calcule_les_heures(self):
        attendance = make_attendance()
        session = AttendanceSession(attendance_id=attendance.id, check_in_time=at(8))
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(session)]
        payload = CheckOutPayload(latitude=0, longitude=0, timestamp=at(17, 30))

        attendance_id = attendance_service.check_out(db, make_project(), LABOUR_ID, payload)

        assert attendance_id == attendance.id
        assert attendance.check_out_time == at(17, 30)
        assert attendance.work_hours == pytest.approx(9.5)
        assert session.check_out_time == at(17, 30)
        assert session.worked_minutes == pytest.approx(570)

    def test_presence_verrouillee(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance()), result(None)]
        payload = CheckOutPayload(latitude=0, longitude=0, timestamp=at(17))

        attendance_service.check_out(db, make_project(), LABOUR_ID, payload)

        assert "FOR UPDATE" in compiled(db, 0)

    def test_sortie_avant_entree(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance(check_in=at(8)))]
        payload = CheckOutPayload(latitude=0, longitude=0, timestamp=at(7))

        with pytest.raises(NegativeDurationError) as exc:
            attendance_service.check_out(db, make_project(), LABOUR_ID, payload)

        assert isinstance(exc.value, BusinessRuleError)
        assert exc.value.code == "NegativeDurationError"

    def test_sans_check_in(self):
        db = MagicMock()
        db.execute.side_effect = [result(None)]
        payload = CheckOutPayload(latitude=0, longitude=0, timestamp=at(17))

        with pytest.raises(BusinessRuleError, match="No check-in found for today"):
            attendance_service.check_out(db, make_project(), LABOUR_ID, payload)

    def test_deja_sorti(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance(check_out=at(16)))]
        payload = CheckOutPayload(latitude=0, longitude=0, timestamp=at(17))

        with pytest.raises(BusinessRuleError, match="Already checked out"):
            attendance_service.check_out(db, make_project(), LABOUR_ID, payload)

    def test_hors_geofence(self):
        db = MagicMock()
        payload = CheckOutPayload(latitude=FAR_AWAY, longitude=0, timestamp=at(17))

        with pytest.raises(GeofenceViolation):
            attendance_service.check_out(db, make_project(radius=100), LABOUR_ID, payload)

        db.execute.assert_not_called()


# ============================================================
# MANUAL_ATTENDANCE
# ============================================================

class TestManualAttendance:
    def _payload(self):
        return ManualAttendancePayload(labour_id=LABOUR_ID, attendance_date=DAY, work_hours=8)

    def test_presence_manuelle_approuvee(self):
        db = MagicMock()
        db.get.return_value = MagicMock()
        db.execute.return_value.scalar.return_value = None

        attendance_id = attendance_service.manual_attendance(db, make_project(), ENGINEER_ID, self._payload())

        attendance = added(db, Attendance)[0]
        assert attendance.id == attendance_id
        assert attendance.status == "APPROVED"
        assert attendance.is_manual is True
        assert attendance.approved_by == ENGINEER_ID
        assert attendance.site_engineer_id == ENGINEER_ID
        assert attendance.work_hours == 8
        assert attendance.check_in_time is None

    def test_presence_deja_existante(self):
        db = MagicMock()
        db.get.return_value = MagicMock()
        db.execute.return_value.scalar.return_value = uuid.uuid4()

        with pytest.raises(BusinessRuleError, match="Attendance already exists for this date"):
            attendance_service.manual_attendance(db, make_project(), ENGINEER_ID, self._payload())

        db.add.assert_not_called()

    def test_ouvrier_inconnu(self):
        db = MagicMock()
        db.get.return_value = None

        with pytest.raises(BusinessRuleError, match="Labour not found"):
            attendance_service.manual_attendance(db, make_project(), ENGINEER_ID, self._payload())


# ============================================================
# TRACK
# ============================================================

class TestTrack:
    def test_reste_dans_la_geofence(self):
        attendance = make_attendance(exits=1)
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(None)]
        payload = TrackPayload(latitude=0.0001, longitude=0, timestamp=at(10))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        assert db.execute.call_count == 2
        assert attendance.entry_exit_count == 1
        assert attendance.is_currently_breached is False
        assert attendance.last_known_lat == 0.0001
        assert attendance.last_event_at == at(10)
        db.add.assert_not_called()

    def test_sortie_ferme_la_session(self):
        attendance = make_attendance(exits=2)
        session = AttendanceSession(attendance_id=attendance.id, check_in_time=at(8))
        db = MagicMock()
        db.execute.side_effect = [
            result(attendance), result(None), result(session), result(240.0),
        ]
        payload = TrackPayload(latitude=0, longitude=FAR_AWAY, timestamp=at(12))

        attendance_service.track(db, make_project(radius=100), LABOUR_ID, payload)

        assert session.check_out_time == at(12)
        assert session.worked_minutes == pytest.approx(240)
        assert attendance.work_hours == pytest.approx(4.0)
        assert attendance.entry_exit_count == 3
        assert attendance.is_currently_breached is True
        assert db.execute.call_count == 4   # pas de mise en liste noire au quota exact

    def test_scenario_d_quota_depasse_liste_noire(self):
        """Scénario D : 4e sortie avec un quota de 3 → liste noire de l'organisation."""
        project = make_project(radius=100)
        attendance = make_attendance(exits=3, max_exits=3)
        session = AttendanceSession(attendance_id=attendance.id, check_in_time=at(14))
        db = MagicMock()
        db.execute.side_effect = [
            result(attendance), result(None), result(session), result(300.0), result(None),
        ]
        payload = TrackPayload(latitude=0, longitude=FAR_AWAY, timestamp=at(15))

        attendance_service.track(db, project, LABOUR_ID, payload)

        assert attendance.entry_exit_count == 4
        assert attendance.is_currently_breached is True
        assert db.execute.call_count == 5
        insert_stmt = db.execute.call_args_list[4][0][0]
        assert insert_stmt.table.name == "organization_blacklist"

    def test_retour_sous_quota_ouvre_une_session(self):
        attendance = make_attendance(breached=True, exits=2)
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(None), result(None)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(13))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        session = added(db, AttendanceSession)[0]
        assert session.attendance_id == attendance.id
        assert session.check_in_time == at(13)
        assert attendance.is_currently_breached is False
        assert attendance.entry_exit_count == 2

    def test_retour_avec_session_deja_ouverte(self):
        """Jamais plus d'une session ouverte par présence."""
        attendance = make_attendance(breached=True, exits=1)
        open_session = AttendanceSession(attendance_id=attendance.id, check_in_time=at(9))
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(None), result(open_session)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(13))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()
        assert attendance.is_currently_breached is False

    def test_retour_apres_quota_sans_nouvelle_session(self):
        attendance = make_attendance(breached=True, exits=4, max_exits=3)
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(None)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(16))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()
        assert attendance.is_currently_breached is False
        assert attendance.entry_exit_count == 4

    def test_ouvrier_en_liste_noire(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance(breached=True, exits=4)), result(uuid.uuid4())]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(16))

        with pytest.raises(Blacklisted, match="Labour is currently blacklisted"):
            attendance_service.track(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()

    def test_presence_verrouillee_pendant_le_ping(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance()), result(None)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(10))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        sql = compiled(db, 0)
        assert "FROM attendance" in sql
        assert "FOR UPDATE" in sql

    def test_ping_anterieur_au_dernier_evenement(self):
        """Retour daté 10:00 reçu après une sortie à 10:05 : aucune session rétroactive."""
        attendance = make_attendance(breached=True, exits=1, last_event=at(10, 5))
        db = MagicMock()
        db.execute.side_effect = [result(attendance)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(10))

        with pytest.raises(BusinessRuleError, match="Out-of-order ping"):
            attendance_service.track(db, make_project(), LABOUR_ID, payload)

        db.add.assert_not_called()
        assert db.execute.call_count == 1
        assert attendance.last_event_at == at(10, 5)
        assert attendance.is_currently_breached is True

    def test_ping_au_meme_instant_accepte(self):
        attendance = make_attendance(breached=True, exits=1, last_event=at(10, 5))
        db = MagicMock()
        db.execute.side_effect = [result(attendance), result(None), result(None)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(10, 5))

        attendance_service.track(db, make_project(), LABOUR_ID, payload)

        assert added(db, AttendanceSession)[0].check_in_time == at(10, 5)
        assert attendance.is_currently_breached is False

    def test_sans_presence_ouverte(self):
        db = MagicMock()
        db.execute.side_effect = [result(None)]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(10))

        with pytest.raises(NoActiveSession):
            attendance_service.track(db, make_project(), LABOUR_ID, payload)

    def test_apres_check_out(self):
        db = MagicMock()
        db.execute.side_effect = [result(make_attendance(check_out=at(17)))]
        payload = TrackPayload(latitude=0, longitude=0, timestamp=at(18))

        with pytest.raises(NoActiveSession):
            attendance_service.track(db, make_project(), LABOUR_ID, payload)

    def test_ping_hors_sequence_duree_nulle(self):
        """Ping antérieur à l'ouverture de la session : jamais de minutes négatives."""
        attendance = make_attendance()
        session = AttendanceSession(attendance_id=attendance.id, check_in_time=at(11))
        db = MagicMock()
        db.execute.side_effect = [
            result(attendance), result(None), result(session), result(0),
        ]
        payload = TrackPayload(latitude=0, longitude=FAR_AWAY, timestamp=at(10))

        attendance_service.track(db, make_project(radius=100), LABOUR_ID, payload)

        assert session.worked_minutes == 0
        assert attendance.work_hours == 0
