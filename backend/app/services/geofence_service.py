"""
Service de validation géofence.
Distance orthodromique (formule de Haversine) entre une position et le chantier.

Ordre de priorité de la définition de la géofence d'un projet :
1. JSON structuré `projects.geofence` (Feature GeoJSON, CIRCLE, POLYGON)
2. Champs historiques latitude / longitude / geofence_radius
3. Aucune restriction → toute position est acceptée
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from app.config import settings

EARTH_RADIUS_M = 6371000

LatLng = Tuple[float, float]


class GeofenceKind(str, Enum):
    CIRCLE = "CIRCLE"
    POLYGON = "POLYGON"
    NONE = "NONE"


@dataclass(frozen=True)
class ResolvedGeofence:
    kind: GeofenceKind
    source: str                       # geofence_geojson, geofence_jsonb, legacy_fields, none
    center: Optional[LatLng] = None
    radius: float = 0.0
    polygon: Tuple[LatLng, ...] = ()


@dataclass(frozen=True)
class GeofenceResult:
    is_inside: bool
    distance_meters: float            # Arrondi au mètre (diagnostic)
    allowed_radius: float
    kind: GeofenceKind
    source: str


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calcule la distance orthodromique entre deux points, en mètres.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def point_in_polygon(lat: float, lng: float, polygon: Sequence[LatLng]) -> bool:
    """Ray casting. Le polygone est une suite de sommets (lat, lng)."""
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        yi, xi = polygon[i]
        yj, xj = polygon[j]
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def distance_to_polygon(lat: float, lng: float, polygon: Sequence[LatLng]) -> float:
    """0 si le point est dans le polygone, sinon distance au sommet le plus proche."""
    if point_in_polygon(lat, lng, polygon):
        return 0.0
    return min(haversine_distance(lat, lng, p_lat, p_lng) for p_lat, p_lng in polygon)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_vertices(points: Any) -> Optional[List[LatLng]]:
    if not isinstance(points, list) or len(points) < 3:
        return None
    vertices = []
    for p in points:
        if not isinstance(p, (list, tuple)) or len(p) < 2 or not (_is_number(p[0]) and _is_number(p[1])):
            return None
        vertices.append((float(p[0]), float(p[1])))
    return vertices


def _from_structured(geofence: Any) -> Optional[ResolvedGeofence]:
    """Interprète le JSON structuré ; None si absent ou inexploitable."""
    if not isinstance(geofence, dict):
        return None

    # Feature GeoJSON : anneau extérieur en [lng, lat]
    if geofence.get("type") == "Feature" and isinstance(geofence.get("geometry"), dict):
        geometry = geofence["geometry"]
        coordinates = geometry.get("coordinates")
        if geometry.get("type") == "Polygon" and isinstance(coordinates, list) and coordinates:
            ring = _as_vertices(coordinates[0])
            if ring:
                return ResolvedGeofence(
                    kind=GeofenceKind.POLYGON,
                    source="geofence_geojson",
                    polygon=tuple((lat, lng) for lng, lat in ring),
                )

    kind = str(geofence.get("type") or "NONE").upper()

    if kind == "CIRCLE":
        center = geofence.get("center")
        radius = geofence.get("radius_meters")
        if (
            isinstance(center, dict)
            and _is_number(center.get("lat"))
            and _is_number(center.get("lng"))
            and _is_number(radius)
            and radius > 0
        ):
            return ResolvedGeofence(
                kind=GeofenceKind.CIRCLE,
                source="geofence_jsonb",
                center=(float(center["lat"]), float(center["lng"])),
                radius=float(radius),
            )

    if kind == "POLYGON":
        vertices = _as_vertices(geofence.get("polygon"))
        if vertices:
            # Saisies [lng, lat] fréquentes pour les chantiers indiens : on les remet en [lat, lng]
            vertices = [(b, a) if a > 50 and b < 45 else (a, b) for a, b in vertices]
            return ResolvedGeofence(
                kind=GeofenceKind.POLYGON,
                source="geofence_jsonb",
                polygon=tuple(vertices),
            )

    return None


def resolve_geofence(project: Any, default_radius: Optional[float] = None) -> ResolvedGeofence:
    """
    Détermine la géofence effective d'un projet.

    Le JSON structuré est prioritaire sur le couple ancrage + rayon ; un
    rayon absent retombe sur GEOFENCE_DEFAULT_RADIUS_M.
    """
    structured = _from_structured(getattr(project, "geofence", None))
    if structured is not None:
        return structured

    lat = getattr(project, "latitude", None)
    lng = getattr(project, "longitude", None)
    if lat is not None and lng is not None:
        radius = getattr(project, "geofence_radius", None)
        if radius is None:
            radius = default_radius if default_radius is not None else settings.GEOFENCE_DEFAULT_RADIUS_M
        return ResolvedGeofence(
            kind=GeofenceKind.CIRCLE,
            source="legacy_fields",
            center=(float(lat), float(lng)),
            radius=float(radius),
        )

    return ResolvedGeofence(kind=GeofenceKind.NONE, source="none")


def evaluate_geofence(
    geofence: ResolvedGeofence,
    lat: float,
    lng: float,
    grace_m: Optional[float] = None,
) -> GeofenceResult:
    """Classe une position par rapport à une géofence déjà résolue."""
    grace = settings.GEOFENCE_GRACE_M if grace_m is None else grace_m

    if geofence.kind == GeofenceKind.CIRCLE:
        distance = haversine_distance(lat, lng, geofence.center[0], geofence.center[1])
        return GeofenceResult(
            is_inside=distance <= geofence.radius + grace,
            distance_meters=round(distance),
            allowed_radius=geofence.radius,
            kind=geofence.kind,
            source=geofence.source,
        )

    if geofence.kind == GeofenceKind.POLYGON:
        distance = distance_to_polygon(lat, lng, geofence.polygon)
        return GeofenceResult(
            is_inside=distance <= grace,
            distance_meters=round(distance),
            allowed_radius=0.0,
            kind=geofence.kind,
            source=geofence.source,
        )

    return GeofenceResult(
        is_inside=True,
        distance_meters=0,
        allowed_radius=0.0,
        kind=GeofenceKind.NONE,
        source=geofence.source,
    )


def evaluate(project: Any, lat: float, lng: float) -> GeofenceResult:
    """Évalue une position par rapport à la géofence d'un projet."""
    return evaluate_geofence(resolve_geofence(project), lat, lng)
