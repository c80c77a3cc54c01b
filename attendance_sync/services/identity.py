"""
Résolution d'identité locale ↔ distante.

Pas de table dédiée : simple requête sur le store local. L'ordre de push dépend
entièrement de cette résolution : une présence n'est poussée que lorsque son
membre et son événement ont chacun un remote_id connu.
"""

from typing import Optional, Tuple

from attendance_sync.exceptions import DependencyNotSyncedError
from attendance_sync.schemas.entities import EVENTS, MEMBERS, AttendanceRecord
from attendance_sync.services.local_store import LocalStore


class IdentityResolver:
    def __init__(self, store: LocalStore):
        self._store = store

    def remote_id_for(self, table: str, local_id: Optional[int]) -> Optional[str]:
        """remote_id de l'entité locale, ou None si pas encore poussée / inconnue."""
        if local_id is None:
            return None
        record = self._store.get(table, local_id)
        return record.remote_id if record is not None else None

    def require_remote_id(self, table: str, local_id: Optional[int], known: Optional[str] = None) -> str:
        """
        remote_id connu (instantané de la file) ou résolu depuis le store.
        Lève DependencyNotSyncedError si la création n'a pas encore été poussée.
        """
        remote_id = known or self.remote_id_for(table, local_id)
        if remote_id is None:
            raise DependencyNotSyncedError(table, local_id)
        return remote_id

    def attendance_references(self, record: AttendanceRecord) -> Tuple[str, str]:
        """(member_id, event_id) distants d'une présence."""
        member_id = self.require_remote_id(MEMBERS, record.member_local_id, record.member_remote_id)
        event_id = self.require_remote_id(EVENTS, record.event_local_id, record.event_remote_id)
        return member_id, event_id
