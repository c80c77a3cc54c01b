"""
Assemblage du client offline-first (store local + moteur + moniteur + scheduler).

Usage :
    client = create_client()
    client.start()          # jobs APScheduler
    client.engine.sync()    # bouton « Synchroniser »
    client.stop()
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from attendance_sync.database import SessionLocal, init_local_db
from attendance_sync.remote.base import RemoteStore
from attendance_sync.remote.http_store import HttpRemoteStore
from attendance_sync.scheduler import start_scheduler, stop_scheduler
from attendance_sync.services.connectivity import ConnectivityMonitor
from attendance_sync.services.local_store import LocalStore
from attendance_sync.services.session_service import ensure_can_sign_out
from attendance_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncClient:
    store: LocalStore
    remote: RemoteStore
    monitor: ConnectivityMonitor
    engine: SyncEngine
    scheduler: Optional[BackgroundScheduler] = field(default=None)

    def start(self) -> None:
        if self.scheduler is None or not self.scheduler.running:
            self.scheduler = start_scheduler(self.engine, self.monitor, self.scheduler)

    def stop(self) -> None:
        if self.scheduler is not None:
            stop_scheduler(self.scheduler)
        self.monitor.close()
        close = getattr(self.remote, "close", None)
        if close is not None:
            close()

    def sign_out(self) -> None:
        """Lève PendingSyncError si des modifications n'ont pas pu être synchronisées."""
        ensure_can_sign_out(self.engine)
        self.stop()


def create_client(
    session_factory=None,
    remote: Optional[RemoteStore] = None,
    monitor: Optional[ConnectivityMonitor] = None,
) -> SyncClient:
    """Crée les tables locales, initialise les paramètres et câble les composants."""
    if session_factory is None:
        init_local_db()
        session_factory = SessionLocal
    else:
        init_local_db(bind=session_factory.kw["bind"])

    store = LocalStore(session_factory)
    store.initialize_settings()
    remote = remote or HttpRemoteStore()
    monitor = monitor or ConnectivityMonitor()
    engine = SyncEngine(store, remote, monitor)
    logger.info("Client de synchronisation prêt (appareil %s)", store.device_id)
    return SyncClient(store=store, remote=remote, monitor=monitor, engine=engine)
