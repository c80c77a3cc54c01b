"""
Modèle SQLAlchemy local pour les membres.

Double adressage :
- local_id  : attribué par SQLite à la création (monotone, jamais réutilisé)
- remote_id : attribué par le store distant une fois la création poussée
"""

import uuid
from sqlalchemy import Column, DateTime, Integer, String

from attendance_sync.database import Base


class Member(Base):
    __tablename__ = "members"
    __table_args__ = {"sqlite_autoincrement": True}

    local_id = Column(Integer, primary_key=True, autoincrement=True)
    remote_id = Column(String(36), unique=True, nullable=True, index=True)
    client_uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False, default="")
    email = Column(String(255), nullable=True)
    qr_code = Column(String(64), nullable=False, index=True)  # Jeton de lookup au scan
    role = Column(String(20), default="member")      # admin, secretary, member
    status = Column(String(20), default="active")    # active, irregular, at-risk, inactive

    sync_status = Column(String(20), default="pending", index=True)  # synced, pending, conflict, error
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
