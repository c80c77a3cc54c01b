"""
Moteur de synchronisation offline → online → offline.

Stratégie :
- Push : la file est vidée dans l'ordre (create avant les présences qui en
  dépendent), une entrée à la fois, sans parallélisme
- Les références locales (member_local_id / event_local_id) sont traduites en
  remote_id ; une dépendance pas encore poussée est un échec « retryable »
- Doublon de présence côté serveur (23505) = succès : la ligne distante existante
  est adoptée
- Pull : members / events / attendance modifiés depuis le dernier sync, récupérés
  en parallèle puis fusionnés (dernier écrit gagnant côté serveur)
- Un seul sync à la fois par instance : un appel concurrent est refusé
  immédiatement, jamais mis en attente
"""

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from attendance_sync.common.datetime_utils import utcnow
from attendance_sync.config import settings
from attendance_sync.exceptions import DependencyNotSyncedError, RemoteStoreError
from attendance_sync.remote.base import RemoteStore
from attendance_sync.schemas.entities import (
    ATTENDANCE,
    COLLECTIONS,
    SYNC_ERROR,
    AttendanceRecord,
    record_class,
)
from attendance_sync.schemas.sync import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    QueueEntry,
    QueueStatus,
    SyncResult,
)
from attendance_sync.services.connectivity import ConnectivityMonitor, ConnectivityStatus
from attendance_sync.services.identity import IdentityResolver
from attendance_sync.services.local_store import LocalStore
from attendance_sync.services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ERROR_ALREADY_SYNCING = "Synchronisation déjà en cours"
ERROR_OFFLINE = "Hors ligne ou connexion dégradée"
ERROR_ABORTED = "Synchronisation annulée"


class SyncState(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ABORTING = "aborting"


StateListener = Callable[[SyncState], None]


class SyncEngine:
    """Coordinateur unique de tous les échanges réseau avec le store distant."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        monitor: Optional[ConnectivityMonitor] = None,
        queue: Optional[SyncQueue] = None,
        lookback_days: int = settings.FRESH_SYNC_LOOKBACK_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.queue = queue or SyncQueue(store)
        self.resolver = IdentityResolver(store)
        self.lookback_days = lookback_days
        self._clock = clock

        self._flight = threading.Lock()
        self._abort = threading.Event()
        self._state = SyncState.IDLE
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # API exposée à l'UI
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state != SyncState.IDLE

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Abonne listener aux changements d'état ; retourne la fonction de désabonnement."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def is_online(self) -> bool:
        return self.monitor is None or self.monitor.should_sync()

    def abort(self) -> None:
        """Interrompt le push entre deux entrées (l'appel distant en cours se termine) ; pas de pull."""
        if self._state == SyncState.SYNCING:
            self._abort.set()
            self._set_state(SyncState.ABORTING)
            logger.info("Annulation de la synchronisation demandée")

    def status(self) -> QueueStatus:
        return QueueStatus(
            pending_count=self.queue.pending_count(),
            failed_count=len(self.queue.dead_letters()),
            syncing=self.is_syncing,
            is_online=self.monitor is None or self.monitor.status == ConnectivityStatus.ONLINE,
            last_sync=self.store.get_last_sync(),
        )

    def sync(self, force: bool = False) -> SyncResult:
        """
        Un cycle complet push + pull.

        force=True ignore l'état du moniteur (sync manuel en connexion dégradée).
        Ne lève jamais d'exception pour un échec partiel : le résultat porte
        success (aucune erreur), processed_count et la liste des erreurs.
        """
        if not self._flight.acquire(blocking=False):
            return SyncResult(success=False, processed_count=0, errors=[ERROR_ALREADY_SYNCING])

        try:
            if not force and not self.is_online():
                return SyncResult(success=False, processed_count=0, errors=[ERROR_OFFLINE])

            self._abort.clear()
            self._set_state(SyncState.SYNCING)
            errors: List[str] = []

            processed = self._push(errors)
            if self._abort.is_set():
                errors.append(ERROR_ABORTED)
                return SyncResult(success=False, processed_count=processed, errors=errors)

            window_start = self._clock()
            if self._pull(errors):
                self.store.set_last_sync(window_start)

            logger.info(
                "Sync terminé : %d poussé(s), %d erreur(s), %d en attente",
                processed, len(errors), self.queue.pending_count(),
            )
            return SyncResult(success=not errors, processed_count=processed, errors=errors)
        finally:
            self._abort.clear()
            self._set_state(SyncState.IDLE)
            self._flight.release()

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _push(self, errors: List[str]) -> int:
        processed = 0
        for entry in self.queue.drain():
            if self._abort.is_set():
                logger.info("Push interrompu avant l'entrée %d", entry.id)
                break

            try:
                self._apply(entry)
            except (RemoteStoreError, DependencyNotSyncedError) as exc:
                retry_count = self.queue.fail(entry.id, str(exc))
                if self.queue.is_exhausted(retry_count):
                    self.store.mark_sync_status(entry.table, entry.entity_local_id, SYNC_ERROR)
                    errors.append(
                        f"Échec de synchronisation {entry.table} ({entry.action}) "
                        f"après {retry_count} tentatives : {exc}"
                    )
                    logger.error("Entrée %d en échec définitif : %s", entry.id, exc)
                else:
                    logger.warning("Entrée %d en échec (essai %d) : %s", entry.id, retry_count, exc)
                continue

            self.queue.ack(entry.id)
            processed += 1
        return processed

    def _apply(self, entry: QueueEntry) -> None:
        handlers = {
            ACTION_CREATE: self._push_create,
            ACTION_UPDATE: self._push_update,
            ACTION_DELETE: self._push_delete,
        }
        handlers[entry.action](entry)

    def _outbound(self, entry: QueueEntry) -> Tuple[dict, Dict[str, str]]:
        """Ligne à envoyer + références distantes résolues (présences uniquement)."""
        record = record_class(entry.table).model_validate(entry.payload)
        if isinstance(record, AttendanceRecord):
            member_id, event_id = self.resolver.attendance_references(record)
            refs = {"member_remote_id": member_id, "event_remote_id": event_id}
            return record.to_remote(member_id=member_id, event_id=event_id), refs
        return record.to_remote(), {}

    def _push_create(self, entry: QueueEntry) -> None:
        current = self.store.get(entry.table, entry.entity_local_id) if entry.entity_local_id else None
        if current is not None and current.remote_id is not None:
            # Création déjà appliquée (ligne adoptée par un pull précédent)
            self.store.mark_synced(entry.table, current.local_id, entry_id=entry.id)
            return

        row, refs = self._outbound(entry)
        try:
            created = self.remote.insert(entry.table, row)
        except RemoteStoreError as exc:
            if entry.table != ATTENDANCE or not exc.is_unique_violation:
                raise
            existing = self.remote.find_attendance(refs["member_remote_id"], refs["event_remote_id"])
            if existing is None:
                # Doublon signalé puis ligne disparue : nouvel essai au prochain sync
                raise RemoteStoreError(
                    f"Présence en doublon introuvable côté serveur "
                    f"(membre {refs['member_remote_id']}, événement {refs['event_remote_id']})"
                ) from exc
            logger.info(
                "Présence déjà enregistrée côté serveur (membre %s, événement %s) : marquée synchronisée",
                refs["member_remote_id"], refs["event_remote_id"],
            )
            self.store.mark_synced(
                entry.table, entry.entity_local_id,
                remote_id=existing["id"],
                entry_id=entry.id, **refs,
            )
            return

        if not self.store.mark_synced(
            entry.table, entry.entity_local_id, remote_id=created["id"], entry_id=entry.id, **refs
        ):
            logger.warning("%s #%s supprimé localement pendant le push", entry.table, entry.entity_local_id)

    def _push_update(self, entry: QueueEntry) -> None:
        remote_id = self.resolver.require_remote_id(
            entry.table, entry.entity_local_id, entry.payload.get("remote_id")
        )
        row, refs = self._outbound(entry)
        changes = {k: v for k, v in row.items() if k not in ("client_uuid", "created_at")}
        self.remote.update(entry.table, remote_id, changes)
        self.store.mark_synced(entry.table, entry.entity_local_id, entry_id=entry.id, **refs)

    def _push_delete(self, entry: QueueEntry) -> None:
        # La suppression locale a déjà eu lieu : seul l'instantané porte le remote_id
        remote_id = entry.payload.get("remote_id")
        if remote_id is None:
            raise DependencyNotSyncedError(entry.table, entry.entity_local_id)
        self.remote.delete(entry.table, remote_id)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def _pull_windows(self) -> Dict[str, Tuple[datetime, bool]]:
        """
        Fenêtre (depuis, inclusif) par table.
        Tout premier sync avec une base de présences vide : présences limitées
        aux lookback_days derniers jours au lieu de tout l'historique.
        """
        last_sync = self.store.get_last_sync()
        since = last_sync or EPOCH
        windows = {table: (since, False) for table in COLLECTIONS}
        if last_sync is None and self.store.count(ATTENDANCE) == 0:
            windows[ATTENDANCE] = (self._clock() - timedelta(days=self.lookback_days), True)
        return windows

    def _pull(self, errors: List[str]) -> bool:
        """Retourne True si les trois tables ont été récupérées et fusionnées."""
        windows = self._pull_windows()
        fetched: Dict[str, list] = {}

        with ThreadPoolExecutor(max_workers=len(COLLECTIONS)) as pool:
            futures = {
                table: pool.submit(self.remote.select_updated_since, table, since, inclusive)
                for table, (since, inclusive) in windows.items()
            }
            for table, future in futures.items():
                try:
                    fetched[table] = future.result()
                except RemoteStoreError as exc:
                    errors.append(f"Échec du pull {table} : {exc}")
                    logger.warning("Pull %s en échec : %s", table, exc)

        if len(fetched) != len(COLLECTIONS):
            return False

        # Membres et événements d'abord : les présences y résolvent leurs local_id
        for table in COLLECTIONS:
            cls = record_class(table)
            for row in fetched[table]:
                self.store.merge_remote(cls.from_remote(row))
            logger.debug("Pull %s : %d ligne(s) fusionnée(s)", table, len(fetched[table]))
        return True

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            listener(state)
