"""
Store distant en mémoire.

Reproduit le comportement du service de référence : identifiants attribués par
le « serveur », idempotence par client_uuid, contrainte d'unicité (member_id,
event_id) sur les présences. Sert de double de test et de mode démo sans réseau.
"""

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from attendance_sync.common.datetime_utils import as_utc, utcnow
from attendance_sync.exceptions import UNIQUE_VIOLATION, RemoteStoreError
from attendance_sync.remote.base import RemoteStore
from attendance_sync.schemas.entities import ATTENDANCE, COLLECTIONS

READ_ONLY_FIELDS = {"id", "client_uuid", "created_at", "updated_at"}


class InMemoryRemoteStore(RemoteStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self.tables:
            raise RemoteStoreError(f"Table inconnue : {table}", status_code=404)
        return self.tables[table]

    @staticmethod
    def _public(row: Dict[str, Any]) -> Dict[str, Any]:
        """Copie « JSON » de la ligne (horodatage serveur en ISO 8601)."""
        public = copy.deepcopy(row)
        public["updated_at"] = row["updated_at"].isoformat()
        return public

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            client_uuid = row.get("client_uuid")
            if client_uuid:
                for existing in rows.values():
                    if existing.get("client_uuid") == client_uuid:
                        return self._public(existing)

            if table == ATTENDANCE:
                for existing in rows.values():
                    if (existing["member_id"], existing["event_id"]) == (row.get("member_id"), row.get("event_id")):
                        raise RemoteStoreError(
                            "duplicate key value violates unique constraint \"uq_attendance_member_event\"",
                            code=UNIQUE_VIOLATION,
                            status_code=409,
                        )

            stored = {k: v for k, v in row.items() if k not in ("id", "updated_at")}
            stored["id"] = str(uuid.uuid4())
            stored["updated_at"] = utcnow()
            rows[stored["id"]] = stored
            return self._public(stored)

    def update(self, table: str, remote_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            stored = self._table(table).get(remote_id)
            if stored is None:
                raise RemoteStoreError(f"{table} {remote_id} introuvable", status_code=404)
            stored.update({k: v for k, v in changes.items() if k not in READ_ONLY_FIELDS})
            stored["updated_at"] = utcnow()
            return self._public(stored)

    def delete(self, table: str, remote_id: str) -> None:
        with self._lock:
            self._table(table).pop(remote_id, None)

    def select_updated_since(
        self, table: str, since: datetime, inclusive: bool = False
    ) -> List[Dict[str, Any]]:
        since = as_utc(since)
        with self._lock:
            rows = sorted(self._table(table).values(), key=lambda r: r["updated_at"])
            return [
                self._public(row) for row in rows
                if row["updated_at"] > since or (inclusive and row["updated_at"] == since)
            ]

    def find_attendance(self, member_id: str, event_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for row in self.tables[ATTENDANCE].values():
                if row["member_id"] == member_id and row["event_id"] == event_id:
                    return self._public(row)
            return None

    def count(self, table: str) -> int:
        return len(self._table(table))
