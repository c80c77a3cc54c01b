"""
Planificateur APScheduler de la synchronisation automatique.

Deux jobs en arrière-plan :
- sonde de connectivité toutes les CONNECTIVITY_CHECK_INTERVAL_SECONDS
- sync automatique toutes les AUTO_SYNC_INTERVAL_SECONDS (ignoré hors ligne / dégradé)

Le retour à l'état ONLINE déclenche en plus un sync immédiat.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from attendance_sync.config import settings
from attendance_sync.services.connectivity import ConnectivityMonitor, ConnectivityStatus
from attendance_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

CONNECTIVITY_JOB_ID = "connectivity_check"
AUTO_SYNC_JOB_ID = "auto_sync"


def _check_connectivity(monitor: ConnectivityMonitor) -> None:
    """Tâche planifiée : nouvelle mesure de la connexion réelle."""
    try:
        monitor.check()
    except Exception as exc:
        logger.error("Erreur lors de la vérification de connectivité : %s", exc)


def _auto_sync(engine: SyncEngine) -> None:
    """
    Tâche planifiée : sync si la connexion est bonne.
    Un sync déjà en cours (manuel) est simplement ignoré.
    """
    if engine.is_syncing or not engine.is_online():
        return
    try:
        result = engine.sync()
        if not result.success:
            logger.warning("Sync automatique partiel : %s", "; ".join(result.errors))
    except Exception as exc:
        logger.error("Erreur lors du sync automatique : %s", exc)


def sync_on_reconnect(engine: SyncEngine):
    """
    Listener du moniteur : sync dès que la connexion redevient ONLINE.
    La première mesure (UNKNOWN → ONLINE) n'est pas un retour en ligne : elle est
    publiée par la garde du sync lui-même, déjà en cours.
    """

    def listener(previous: ConnectivityStatus, current: ConnectivityStatus) -> None:
        if previous == ConnectivityStatus.UNKNOWN:
            return
        if current == ConnectivityStatus.ONLINE and previous != ConnectivityStatus.ONLINE:
            logger.info("Connexion rétablie : synchronisation immédiate")
            _auto_sync(engine)

    return listener


def start_scheduler(
    engine: SyncEngine,
    monitor: ConnectivityMonitor,
    scheduler: BackgroundScheduler = None,
) -> BackgroundScheduler:
    """Démarre les jobs en arrière-plan et retourne le planificateur."""
    scheduler = scheduler or BackgroundScheduler()
    monitor.add_listener(sync_on_reconnect(engine))

    scheduler.add_job(
        _check_connectivity,
        trigger="interval",
        seconds=settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS,
        args=[monitor],
        id=CONNECTIVITY_JOB_ID,
        replace_existing=True,
    )
    scheduler.add_job(
        _auto_sync,
        trigger="interval",
        seconds=settings.AUTO_SYNC_INTERVAL_SECONDS,
        args=[engine],
        id=AUTO_SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : connectivité toutes les %ds, sync toutes les %ds.",
        settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS,
        settings.AUTO_SYNC_INTERVAL_SECONDS,
    )
    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler) -> None:
    """Arrête le planificateur proprement (fermeture de l'application)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
