# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme attendance.project_id → projects.id échouent
# avec NoReferencedTableError si organization.py n'est pas chargé avant attendance.py.

from app.models.organization import (  # noqa: F401  (doit précéder attendance)
    Labour,
    Organization,
    Project,
    ProjectSiteEngineer,
    SiteEngineer,
)
from app.models.attendance import Attendance, AttendanceSession, OrganizationBlacklist  # noqa: F401
from app.models.material_request import MaterialRequest  # noqa: F401
from app.models.dpr import Dpr  # noqa: F401
from app.models.sync_log import SyncActionLog, SyncError  # noqa: F401
