"""
Paramètres locaux clé/valeur (last_sync_timestamp, device_id).
"""

from sqlalchemy import JSON, Column, String

from attendance_sync.database import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=True)
