"""
Tests du planificateur : enregistrement des jobs, sync automatique,
sync au retour en ligne et robustesse des tâches.
"""

from unittest.mock import MagicMock

from attendance_sync.scheduler import (
    AUTO_SYNC_JOB_ID,
    CONNECTIVITY_JOB_ID,
    _auto_sync,
    _check_connectivity,
    start_scheduler,
    stop_scheduler,
    sync_on_reconnect,
)
from attendance_sync.schemas.sync import SyncResult
from attendance_sync.services.connectivity import ConnectivityStatus


def make_engine(online=True, syncing=False):
    engine = MagicMock()
    engine.is_syncing = syncing
    engine.is_online.return_value = online
    engine.sync.return_value = SyncResult(success=True, processed_count=0, errors=[])
    return engine


def test_jobs_enregistres():
    scheduler = MagicMock()
    monitor = MagicMock()

    start_scheduler(make_engine(), monitor, scheduler=scheduler)

    job_ids = {c.kwargs["id"] for c in scheduler.add_job.call_args_list}
    assert job_ids == {CONNECTIVITY_JOB_ID, AUTO_SYNC_JOB_ID}
    scheduler.start.assert_called_once()
    monitor.add_listener.assert_called_once()


def test_arret_scheduler():
    scheduler = MagicMock()
    scheduler.running = True

    stop_scheduler(scheduler)

    scheduler.shutdown.assert_called_once_with(wait=False)


def test_arret_scheduler_deja_arrete():
    scheduler = MagicMock()
    scheduler.running = False

    stop_scheduler(scheduler)

    scheduler.shutdown.assert_not_called()


def test_sync_auto_en_ligne():
    engine = make_engine()
    _auto_sync(engine)
    engine.sync.assert_called_once_with()


def test_sync_auto_ignore_hors_ligne():
    engine = make_engine(online=False)
    _auto_sync(engine)
    engine.sync.assert_not_called()


def test_sync_auto_ignore_si_deja_en_cours():
    engine = make_engine(syncing=True)
    _auto_sync(engine)
    engine.sync.assert_not_called()


def test_sync_auto_exception_loggee():
    """Une exception dans le job ne tue pas le planificateur."""
    engine = make_engine()
    engine.sync.side_effect = RuntimeError("boom")

    _auto_sync(engine)  # ne lève pas


def test_verification_connectivite_exception_loggee():
    monitor = MagicMock()
    monitor.check.side_effect = RuntimeError("boom")

    _check_connectivity(monitor)

    monitor.check.assert_called_once()


def test_sync_au_retour_en_ligne():
    engine = make_engine()
    listener = sync_on_reconnect(engine)

    listener(ConnectivityStatus.DEGRADED, ConnectivityStatus.ONLINE)

    engine.sync.assert_called_once()


def test_pas_de_sync_en_passant_hors_ligne():
    engine = make_engine()
    listener = sync_on_reconnect(engine)

    listener(ConnectivityStatus.ONLINE, ConnectivityStatus.OFFLINE)
    listener(ConnectivityStatus.OFFLINE, ConnectivityStatus.DEGRADED)

    engine.sync.assert_not_called()


def test_premiere_mesure_ne_declenche_pas_de_sync():
    """UNKNOWN → ONLINE vient de la garde d'un sync déjà en cours : pas de second sync."""
    engine = make_engine()
    listener = sync_on_reconnect(engine)

    listener(ConnectivityStatus.UNKNOWN, ConnectivityStatus.ONLINE)

    engine.sync.assert_not_called()
