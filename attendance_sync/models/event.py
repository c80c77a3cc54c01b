"""
Modèle SQLAlchemy local pour les événements (séances de présence).
"""

import uuid
from sqlalchemy import Column, Date, DateTime, Integer, String, Time

from attendance_sync.database import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = {"sqlite_autoincrement": True}

    local_id = Column(Integer, primary_key=True, autoincrement=True)
    remote_id = Column(String(36), unique=True, nullable=True, index=True)
    client_uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    title = Column(String(255), nullable=False)
    event_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    location = Column(String(255), nullable=True)
    status = Column(String(20), default="upcoming")  # upcoming, active, closed

    sync_status = Column(String(20), default="pending", index=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
