"""
Modèle SQLAlchemy local pour les présences.

Références doubles vers le membre et l'événement : une présence créée hors-ligne
peut pointer vers un membre/événement qui n'a pas encore d'identifiant distant.
Pas de clé étrangère : les lignes référencées peuvent être remplacées par un pull.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from attendance_sync.database import Base


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = {"sqlite_autoincrement": True}

    local_id = Column(Integer, primary_key=True, autoincrement=True)
    remote_id = Column(String(36), unique=True, nullable=True, index=True)
    client_uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    member_local_id = Column(Integer, nullable=True, index=True)
    member_remote_id = Column(String(36), nullable=True, index=True)
    event_local_id = Column(Integer, nullable=True, index=True)
    event_remote_id = Column(String(36), nullable=True, index=True)

    check_in_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False)   # early, on-time, late, excused, absent
    method = Column(String(20), nullable=False)   # qr-scan, manual, self-checkin
    is_excused = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)

    sync_status = Column(String(20), default="pending", index=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
