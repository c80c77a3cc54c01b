"""
Schémas Pydantic pour la file de synchronisation et le résultat d'un sync().
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, field_validator

from attendance_sync.schemas.entities import COLLECTIONS

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
VALID_ACTIONS = {ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE}


class QueueEntry(BaseModel):
    """Une mutation locale en attente de push vers le store distant."""

    id: int
    table: str                      # members, events, attendance
    action: str                     # create, update, delete
    entity_local_id: Optional[int] = None
    payload: Dict[str, Any]         # Instantané complet de l'entité à l'ajout
    depends_on: List[Tuple[str, int]] = []
    enqueued_at: datetime
    retry_count: int = 0
    last_error: Optional[str] = None

    @field_validator("table")
    @classmethod
    def valid_table(cls, v: str) -> str:
        if v not in COLLECTIONS:
            raise ValueError(f"Table inconnue : {v}")
        return v

    @field_validator("action")
    @classmethod
    def valid_action(cls, v: str) -> str:
        if v not in VALID_ACTIONS:
            raise ValueError(f"Action invalide. Valeurs acceptées : {sorted(VALID_ACTIONS)}")
        return v


class SyncResult(BaseModel):
    """Rapport retourné par SyncEngine.sync(), jamais d'exception pour un échec partiel."""

    success: bool                   # True uniquement si aucune erreur
    processed_count: int
    errors: List[str] = []


class QueueStatus(BaseModel):
    """État de la file exposé à l'UI (badge « X en attente »)."""

    pending_count: int
    failed_count: int
    syncing: bool
    is_online: bool
    last_sync: Optional[datetime] = None
