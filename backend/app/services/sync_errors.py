"""
Erreurs métier de la synchronisation offline.

Chaque erreur met fin à la transaction de SON action uniquement ; l'orchestrateur
la convertit en entrée REJECTED du journal (message lisible + code) et le batch
continue. `code` est le nom renvoyé au client et stocké dans sync_errors.
"""

from typing import Optional


class SyncActionError(Exception):
    code = "SyncActionError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SyncActionError):
    """Action mal formée (enveloppe ou payload)."""
    code = "ValidationError"


class AuthorizationError(SyncActionError):
    """Rôle ou affectation incompatible avec le type d'action."""
    code = "AuthorizationError"


class GeofenceViolation(SyncActionError):
    """Position hors de la géofence du projet (CHECK_IN / CHECK_OUT)."""
    code = "GeofenceViolation"

    def __init__(self, distance_meters: float, allowed_radius: float, message: Optional[str] = None):
        self.distance_meters = distance_meters
        self.allowed_radius = allowed_radius
        super().__init__(
            message
            or f"Outside geofence: {round(distance_meters)}m from allowed {round(allowed_radius)}m"
        )


class BusinessRuleError(SyncActionError):
    code = "BusinessRuleError"


class NegativeDurationError(BusinessRuleError):
    """Sortie antérieure à l'entrée (horloge du téléphone décalée)."""
    code = "NegativeDurationError"


class NoActiveSession(SyncActionError):
    code = "NoActiveSession"


class Blacklisted(SyncActionError):
    code = "Blacklisted"


class InternalError(SyncActionError):
    """Erreur base de données ou infrastructure non classée."""
    code = "InternalError"
