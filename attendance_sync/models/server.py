"""
Modèles SQLAlchemy du store distant de référence.

Le serveur attribue les identifiants (UUID) ; client_uuid est la clé d'idempotence
envoyée par l'appareil. La contrainte uq_attendance_member_event garantit au plus
une présence par membre et par événement.
"""

import uuid
from sqlalchemy import Boolean, Column, Date, DateTime, String, Text, Time, UniqueConstraint

from attendance_sync.database import ServerBase


def _new_id() -> str:
    return str(uuid.uuid4())


class RemoteMember(ServerBase):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_uuid = Column(String(36), unique=True, nullable=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False, default="")
    email = Column(String(255), nullable=True)
    qr_code = Column(String(64), unique=True, nullable=False)
    role = Column(String(20), default="member")
    status = Column(String(20), default="active")
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, index=True)


class RemoteEvent(ServerBase):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_uuid = Column(String(36), unique=True, nullable=True)
    title = Column(String(255), nullable=False)
    event_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    location = Column(String(255), nullable=True)
    status = Column(String(20), default="upcoming")
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, index=True)


class RemoteAttendance(ServerBase):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("member_id", "event_id", name="uq_attendance_member_event"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    client_uuid = Column(String(36), unique=True, nullable=True)
    member_id = Column(String(36), nullable=False, index=True)
    event_id = Column(String(36), nullable=False, index=True)
    check_in_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False)
    method = Column(String(20), nullable=False)
    is_excused = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, index=True)
