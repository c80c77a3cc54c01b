"""
Modèle SQLAlchemy pour la file de synchronisation (mutations en attente de push).

L'ordre de traitement est l'ordre d'insertion (enqueued_at, puis id).
depends_on liste les entités référencées sous forme [table, local_id].
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from attendance_sync.database import Base


class SyncQueueItem(Base):
    __tablename__ = "sync_queue"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(20), nullable=False)   # members, events, attendance
    action = Column(String(10), nullable=False)       # create, update, delete
    entity_local_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)            # Instantané complet au moment de l'ajout
    depends_on = Column(JSON, nullable=False, default=list)

    enqueued_at = Column(DateTime, nullable=False, index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
