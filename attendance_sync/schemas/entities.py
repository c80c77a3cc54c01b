"""
Schémas Pydantic des entités locales (membres, événements, présences).

Un enregistrement local porte deux identifiants :
- local_id  : clé SQLite, valable uniquement sur cet appareil
- remote_id : clé attribuée par le store distant après le push de la création

to_remote() produit la ligne envoyée au store distant (sans les champs locaux),
from_remote() reconstruit un enregistrement local « synced » depuis une ligne distante.
"""

import uuid
from datetime import date, datetime, time
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Type

from pydantic import BaseModel, EmailStr, Field, field_validator

MEMBERS = "members"
EVENTS = "events"
ATTENDANCE = "attendance"
COLLECTIONS = (MEMBERS, EVENTS, ATTENDANCE)

MEMBER_ROLES = {"admin", "secretary", "member"}
MEMBER_STATUSES = {"active", "irregular", "at-risk", "inactive"}
EVENT_STATUSES = {"upcoming", "active", "closed"}
ATTENDANCE_STATUSES = {"early", "on-time", "late", "excused", "absent"}
CHECK_IN_METHODS = {"qr-scan", "manual", "self-checkin"}

SYNC_SYNCED = "synced"
SYNC_PENDING = "pending"
SYNC_CONFLICT = "conflict"
SYNC_ERROR = "error"
SYNC_STATUSES = {SYNC_SYNCED, SYNC_PENDING, SYNC_CONFLICT, SYNC_ERROR}


def _check(value: str, allowed: set, label: str) -> str:
    if value not in allowed:
        raise ValueError(f"{label} invalide. Valeurs acceptées : {sorted(allowed)}")
    return value


class EntityRecord(BaseModel):
    """Champs communs à toutes les entités synchronisées."""

    collection: ClassVar[str]
    # Champs qui ne quittent jamais l'appareil
    LOCAL_ONLY: ClassVar[FrozenSet[str]] = frozenset({"local_id", "remote_id", "sync_status"})

    local_id: Optional[int] = None
    remote_id: Optional[str] = None
    client_uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))  # Clé d'idempotence
    sync_status: str = SYNC_PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("sync_status")
    @classmethod
    def valid_sync_status(cls, v: str) -> str:
        return _check(v, SYNC_STATUSES, "Statut de synchronisation")

    def to_remote(self, **overrides: Any) -> Dict[str, Any]:
        """Ligne JSON envoyée au store distant."""
        row = self.model_dump(mode="json", exclude=set(self.LOCAL_ONLY))
        row.update(overrides)
        return row

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "EntityRecord":
        """Enregistrement local « synced » construit depuis une ligne distante."""
        data = {k: v for k, v in row.items() if k in cls.model_fields and k not in cls.LOCAL_ONLY}
        if data.get("client_uuid") is None:
            data.pop("client_uuid", None)
        return cls(**data, remote_id=row["id"], sync_status=SYNC_SYNCED)


class MemberRecord(EntityRecord):
    collection: ClassVar[str] = MEMBERS

    full_name: str
    phone: str = ""
    email: Optional[EmailStr] = None
    qr_code: str = Field(default_factory=lambda: str(uuid.uuid4()))
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
        return _check(v, MEMBER_ROLES, "Rôle")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check(v, MEMBER_STATUSES, "Statut membre")


class EventRecord(EntityRecord):
    collection: ClassVar[str] = EVENTS

    title: str
    event_date: date
    start_time: time
    location: Optional[str] = None
    status: str = "upcoming"

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check(v, EVENT_STATUSES, "Statut événement")


class AttendanceRecord(EntityRecord):
    collection: ClassVar[str] = ATTENDANCE
    LOCAL_ONLY: ClassVar[FrozenSet[str]] = EntityRecord.LOCAL_ONLY | {
        "member_local_id", "member_remote_id", "event_local_id", "event_remote_id",
    }

    member_local_id: Optional[int] = None
    member_remote_id: Optional[str] = None
    event_local_id: Optional[int] = None
    event_remote_id: Optional[str] = None
    check_in_at: datetime
    status: str
    method: str = "qr-scan"
    is_excused: bool = False
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check(v, ATTENDANCE_STATUSES, "Statut de présence")

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        return _check(v, CHECK_IN_METHODS, "Méthode de check-in")

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> "AttendanceRecord":
        record = super().from_remote(row)
        record.member_remote_id = row.get("member_id")
        record.event_remote_id = row.get("event_id")
        return record


RECORD_CLASSES: Dict[str, Type[EntityRecord]] = {
    MEMBERS: MemberRecord,
    EVENTS: EventRecord,
    ATTENDANCE: AttendanceRecord,
}


def record_class(collection: str) -> Type[EntityRecord]:
    """Retourne la classe d'enregistrement d'une collection ; ValueError si inconnue."""
    try:
        return RECORD_CLASSES[collection]
    except KeyError:
        raise ValueError(f"Collection inconnue : {collection}")
