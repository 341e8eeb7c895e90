"""
Schémas Pydantic des payloads, un par type d'action.

Le payload d'une action est un dictionnaire libre côté client ; chaque
handler le reçoit déjà validé sous la forme du modèle correspondant.
Les horodatages sont normalisés en UTC naïf (convention des colonnes DateTime).
"""

import uuid
import datetime as dt
from datetime import datetime, timezone
from typing import Dict, Optional, Type

from pydantic import BaseModel, field_validator, model_validator

from app.schemas.sync import ActionType


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _not_blank(value: str, field: str) -> str:
    if not value.strip():
        raise ValueError(f"{field} must not be empty")
    return value.strip()


class LocationPayload(BaseModel):
    """Position GPS horodatée (CHECK_IN, CHECK_OUT, TRACK)."""
    latitude: float
    longitude: float
    timestamp: datetime

    @field_validator("latitude")
    @classmethod
    def latitude_in_range(cls, v: float) -> float:
        if not -90 <= v <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def longitude_in_range(cls, v: float) -> float:
        if not -180 <= v <= 180:
            raise ValueError("longitude must be between -180 and 180")
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)


class CheckInPayload(LocationPayload):
    pass


class CheckOutPayload(LocationPayload):
    pass


class TrackPayload(LocationPayload):
    pass


class CreateMaterialRequestPayload(BaseModel):
    title: str
    category: str
    quantity: float
    description: str = ""

    @field_validator("title", "category")
    @classmethod
    def required_text(cls, v: str, info) -> str:
        return _not_blank(v, info.field_name)

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v


class UpdateMaterialRequestPayload(BaseModel):
    request_id: uuid.UUID
    title: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[float] = None
    description: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("quantity must be greater than 0")
        return v

    @model_validator(mode="after")
    def at_least_one_field(self) -> "UpdateMaterialRequestPayload":
        if not self.changes():
            raise ValueError("No fields to update")
        return self

    def changes(self) -> Dict[str, object]:
        """Champs effectivement fournis (hors request_id)."""
        return self.model_dump(exclude={"request_id"}, exclude_none=True)


class DeleteMaterialRequestPayload(BaseModel):
    request_id: uuid.UUID


class CreateDprPayload(BaseModel):
    title: str
    report_date: dt.date
    description: str = ""
    work_done: str = ""
    materials_used: str = ""
    manpower_deployed: str = ""

    @field_validator("title")
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        return _not_blank(v, "title")


class ManualAttendancePayload(BaseModel):
    labour_id: uuid.UUID
    attendance_date: dt.date
    work_hours: float

    @field_validator("work_hours")
    @classmethod
    def work_hours_in_day(cls, v: float) -> float:
        if not 0 < v <= 24:
            raise ValueError("work_hours must be greater than 0 and at most 24")
        return v


PAYLOAD_SCHEMAS: Dict[ActionType, Type[BaseModel]] = {
    ActionType.CHECK_IN: CheckInPayload,
    ActionType.CHECK_OUT: CheckOutPayload,
    ActionType.CREATE_MATERIAL_REQUEST: CreateMaterialRequestPayload,
    ActionType.UPDATE_MATERIAL_REQUEST: UpdateMaterialRequestPayload,
    ActionType.DELETE_MATERIAL_REQUEST: DeleteMaterialRequestPayload,
    ActionType.CREATE_DPR: CreateDprPayload,
    ActionType.MANUAL_ATTENDANCE: ManualAttendancePayload,
    ActionType.TRACK: TrackPayload,
}
