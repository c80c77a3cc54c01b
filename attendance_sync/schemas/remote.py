"""
Schémas Pydantic des lignes du store distant de référence.

Les schémas *In valident une ligne reçue (création, ou ligne fusionnée pour un
PATCH) ; les schémas *Out sont renvoyés au client, horodatages en UTC explicite.
"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator

from attendance_sync.common.datetime_utils import as_utc
from attendance_sync.schemas.entities import (
    ATTENDANCE_STATUSES,
    CHECK_IN_METHODS,
    EVENT_STATUSES,
    MEMBER_ROLES,
    MEMBER_STATUSES,
)


def _one_of(value: str, allowed: set, label: str) -> str:
    if value not in allowed:
        raise ValueError(f"{label} invalide. Valeurs acceptées : {sorted(allowed)}")
    return value


class RowIn(BaseModel):
    client_uuid: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class MemberIn(RowIn):
    full_name: str
    phone: str = ""
    email: Optional[EmailStr] = None
    qr_code: str
    role: str = "member"
    status: str = "active"

    @field_validator("full_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom du membre ne peut pas être vide.")
        return v.strip()

    @field_validator("role")
    @classmethod
    def valid_role(cls, v: str) -> str:
        return _one_of(v, MEMBER_ROLES, "Rôle")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _one_of(v, MEMBER_STATUSES, "Statut membre")


class EventIn(RowIn):
    title: str
    event_date: date
    start_time: time
    location: Optional[str] = None
    status: str = "upcoming"

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _one_of(v, EVENT_STATUSES, "Statut événement")


class AttendanceIn(RowIn):
    member_id: str
    event_id: str
    check_in_at: datetime
    status: str
    method: str = "qr-scan"
    is_excused: bool = False
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _one_of(v, ATTENDANCE_STATUSES, "Statut de présence")

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        return _one_of(v, CHECK_IN_METHODS, "Méthode de check-in")


class RowOut(BaseModel):
    id: str
    client_uuid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at", "updated_at")
    @classmethod
    def utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None


class MemberOut(RowOut):
    full_name: str
    phone: str
    email: Optional[str] = None
    qr_code: str
    role: str
    status: str


class EventOut(RowOut):
    title: str
    event_date: date
    start_time: time
    location: Optional[str] = None
    status: str


class AttendanceOut(RowOut):
    member_id: str
    event_id: str
    check_in_at: datetime
    status: str
    method: str
    is_excused: bool
    notes: Optional[str] = None
