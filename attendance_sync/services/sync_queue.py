"""
File de synchronisation durable (mutations locales en attente de push).

- Ajout en O(1), identifiant auto-incrémenté (jamais réutilisé)
- Traitement dans l'ordre d'ajout (FIFO), avec une passe topologique stable :
  une entrée n'est jamais rendue avant la création en file dont elle dépend
- Une entrée en échec reste en file ; au-delà de MAX_SYNC_RETRIES elle est
  signalée mais jamais supprimée automatiquement (pas de perte silencieuse)
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from attendance_sync.common.datetime_utils import utcnow
from attendance_sync.config import settings
from attendance_sync.models.sync_queue import SyncQueueItem
from attendance_sync.schemas.entities import COLLECTIONS
from attendance_sync.schemas.sync import ACTION_CREATE, VALID_ACTIONS, QueueEntry

if TYPE_CHECKING:
    from attendance_sync.services.local_store import LocalStore

logger = logging.getLogger(__name__)


def stage_entry(
    db: Session,
    table: str,
    action: str,
    payload: Any,
    depends_on: Optional[Iterable[Sequence]] = None,
) -> SyncQueueItem:
    """
    Ajoute une entrée à la file dans la session fournie (sans commit).

    Utilisé par LocalStore.record() pour que l'écriture de l'entité et l'ajout
    en file soient dans la même transaction.
    """
    if table not in COLLECTIONS:
        raise ValueError(f"Table inconnue : {table}")
    if action not in VALID_ACTIONS:
        raise ValueError(f"Action invalide : {action}")

    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")

    item = SyncQueueItem(
        table_name=table,
        action=action,
        entity_local_id=payload.get("local_id"),
        payload=payload,
        depends_on=[[ref_table, ref_id] for ref_table, ref_id in (depends_on or [])],
        enqueued_at=utcnow(),
        retry_count=0,
    )
    db.add(item)
    db.flush()  # Obtenir l'ID avant le commit
    logger.debug("File : +%s %s #%s (entrée %d)", action, table, item.entity_local_id, item.id)
    return item


def discard_entries(db: Session, table: str, local_id: int) -> int:
    """Supprime (dans la session fournie) les entrées d'une entité jamais poussée."""
    items = db.execute(
        select(SyncQueueItem).where(
            SyncQueueItem.table_name == table,
            SyncQueueItem.entity_local_id == local_id,
        )
    ).scalars().all()
    for item in items:
        db.delete(item)
    return len(items)


def count_other_entries(db: Session, table: str, local_id: int, entry_id: Optional[int]) -> int:
    """Nombre d'entrées encore en file pour une entité, hors entry_id."""
    query = select(func.count()).select_from(SyncQueueItem).where(
        SyncQueueItem.table_name == table,
        SyncQueueItem.entity_local_id == local_id,
    )
    if entry_id is not None:
        query = query.where(SyncQueueItem.id != entry_id)
    return db.execute(query).scalar() or 0


def _to_entry(item: SyncQueueItem) -> QueueEntry:
    return QueueEntry(
        id=item.id,
        table=item.table_name,
        action=item.action,
        entity_local_id=item.entity_local_id,
        payload=item.payload,
        depends_on=[tuple(ref) for ref in (item.depends_on or [])],
        enqueued_at=item.enqueued_at,
        retry_count=item.retry_count,
        last_error=item.last_error,
    )


class SyncQueue:
    """Accès ordonné à la file persistée dans le store local."""

    def __init__(self, store: "LocalStore", max_retries: int = settings.MAX_SYNC_RETRIES):
        self._store = store
        self.max_retries = max_retries

    def append(
        self,
        table: str,
        action: str,
        payload: Any,
        depends_on: Optional[Iterable[Sequence]] = None,
    ) -> QueueEntry:
        """Ajoute durablement une entrée (transaction propre)."""
        with self._store.transaction() as db:
            return _to_entry(stage_entry(db, table, action, payload, depends_on))

    def entries(self) -> List[QueueEntry]:
        """Toutes les entrées, dans l'ordre d'ajout."""
        with self._store.transaction() as db:
            items = db.execute(
                select(SyncQueueItem).order_by(SyncQueueItem.enqueued_at, SyncQueueItem.id)
            ).scalars().all()
            return [_to_entry(item) for item in items]

    def drain(self) -> List[QueueEntry]:
        """
        Entrées à traiter par le moteur, une par une.

        Ordre d'ajout, sauf qu'une entrée dépendant d'une création encore en file
        (membre/événement référencé, ou l'entité elle-même pour update/delete)
        est reportée juste après cette création. Les dépendances cycliques ou
        introuvables retombent sur l'ordre d'ajout.
        """
        entries = self.entries()
        creates: Dict[Tuple[str, int], int] = {}
        for entry in entries:
            if entry.action == ACTION_CREATE and entry.entity_local_id is not None:
                creates.setdefault((entry.table, entry.entity_local_id), entry.id)

        ordered: List[QueueEntry] = []
        emitted: set = set()
        waiting: List[QueueEntry] = []

        def blocked(entry: QueueEntry) -> bool:
            for ref in entry.depends_on:
                create_id = creates.get(tuple(ref))
                if create_id is not None and create_id != entry.id and create_id not in emitted:
                    return True
            return False

        for entry in entries:
            if blocked(entry):
                waiting.append(entry)
                continue
            ordered.append(entry)
            emitted.add(entry.id)

            # Débloquer les entrées en attente, dans leur ordre d'ajout
            progress = True
            while progress:
                progress = False
                for pending in list(waiting):
                    if not blocked(pending):
                        waiting.remove(pending)
                        ordered.append(pending)
                        emitted.add(pending.id)
                        progress = True

        if waiting:
            logger.warning("File : %d entrée(s) aux dépendances non résolues", len(waiting))
        return ordered + waiting

    def ack(self, entry_id: int) -> None:
        """Supprime une entrée appliquée avec succès côté distant."""
        with self._store.transaction() as db:
            item = db.get(SyncQueueItem, entry_id)
            if item is not None:
                db.delete(item)

    def fail(self, entry_id: int, error: str) -> int:
        """
        Incrémente le compteur d'essais et mémorise la dernière erreur.
        Retourne le nouveau compteur (0 si l'entrée a disparu entre-temps).
        """
        with self._store.transaction() as db:
            item = db.get(SyncQueueItem, entry_id)
            if item is None:
                return 0
            item.retry_count = (item.retry_count or 0) + 1
            item.last_error = error
            return item.retry_count

    def is_exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_retries

    def dead_letters(self) -> List[QueueEntry]:
        """Entrées en échec définitif, conservées pour intervention manuelle."""
        return [e for e in self.entries() if self.is_exhausted(e.retry_count)]

    def pending_count(self) -> int:
        with self._store.transaction() as db:
            return db.execute(select(func.count()).select_from(SyncQueueItem)).scalar() or 0
