"""
Tests du moteur de synchronisation (push + pull).
Couverture : ordre causal membre → présence, idempotence, aller-retour sur un
second appareil, présence en double (23505), 5 échecs consécutifs, convergence
de deux appareils, annulation, exécution unique, garde hors ligne, fenêtre de pull.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from attendance_sync.exceptions import UNIQUE_VIOLATION, RemoteStoreError
from attendance_sync.remote.base import RemoteStore
from attendance_sync.remote.memory_store import InMemoryRemoteStore
from attendance_sync.schemas.entities import ATTENDANCE, EVENTS, MEMBERS
from attendance_sync.schemas.sync import ACTION_CREATE, ACTION_UPDATE
from attendance_sync.services.sync_engine import (
    EPOCH,
    ERROR_ABORTED,
    ERROR_ALREADY_SYNCING,
    ERROR_OFFLINE,
    SyncEngine,
    SyncState,
)
from conftest import make_attendance, make_event, make_member


# --- Helpers ---

class FlakyRemote(InMemoryRemoteStore):
    """Store en mémoire dont les N premières insertions d'une table échouent."""

    def __init__(self, failures=None):
        super().__init__()
        self.failures = dict(failures or {})
        self.insert_calls = []

    def insert(self, table, row):
        self.insert_calls.append(table)
        if self.failures.get(table, 0) > 0:
            self.failures[table] -= 1
            raise RemoteStoreError("HTTP 503 : service indisponible", status_code=503)
        return super().insert(table, row)


def seed_member_and_event(store, engine):
    """Membre + événement créés puis synchronisés ; retourne les versions synced."""
    member = store.record(ACTION_CREATE, make_member())
    event = store.record(ACTION_CREATE, make_event())
    assert engine.sync().success
    return store.get(MEMBERS, member.local_id), store.get(EVENTS, event.local_id)


# ============================================================
# Push
# ============================================================

def test_sync_file_vide(engine, store):
    """Aucune mutation → succès, rien poussé, dernier sync mémorisé."""
    result = engine.sync()

    assert result.success is True
    assert result.processed_count == 0
    assert result.errors == []
    assert store.get_last_sync() is not None


def test_scenario_creation_membre_remote_mocke(store):
    """Store vide, create membre, remote qui accepte tout → remote_id, synced, file vide."""
    remote = MagicMock(spec=RemoteStore)
    remote.insert.return_value = {"id": "rem-1", "full_name": "A"}
    remote.select_updated_since.return_value = []
    engine = SyncEngine(store, remote)
    member = store.record(ACTION_CREATE, make_member("A"))

    result = engine.sync()

    saved = store.get(MEMBERS, member.local_id)
    assert result.success is True
    assert result.processed_count == 1
    assert saved.remote_id == "rem-1"
    assert saved.sync_status == "synced"
    assert engine.queue.pending_count() == 0
    sent = remote.insert.call_args.args[1]
    assert sent["full_name"] == "A"
    assert "local_id" not in sent and "sync_status" not in sent


def test_ordre_causal_membre_puis_presence(engine, store, remote):
    """La présence est poussée avec les remote_ids du membre et de l'événement."""
    member = store.record(ACTION_CREATE, make_member())
    event = store.record(ACTION_CREATE, make_event())
    attendance = store.record(ACTION_CREATE, make_attendance(member, event))

    result = engine.sync()

    assert result.success is True
    assert result.processed_count == 3
    member = store.get(MEMBERS, member.local_id)
    event = store.get(EVENTS, event.local_id)
    saved = store.get(ATTENDANCE, attendance.local_id)
    remote_row = remote.tables[ATTENDANCE][saved.remote_id]
    assert remote_row["member_id"] == member.remote_id
    assert remote_row["event_id"] == event.remote_id
    assert saved.member_remote_id == member.remote_id
    assert saved.sync_status == "synced"


def test_presence_jamais_poussee_avant_son_membre(store):
    """Membre en échec → présence en attente (dépendance), puis poussée au sync suivant."""
    remote = FlakyRemote(failures={MEMBERS: 1})
    engine = SyncEngine(store, remote)
    member = store.record(ACTION_CREATE, make_member())
    event = store.record(ACTION_CREATE, make_event())
    attendance = store.record(ACTION_CREATE, make_attendance(member, event))

    first = engine.sync()

    assert first.processed_count == 1           # l'événement seulement
    assert remote.count(ATTENDANCE) == 0
    assert remote.insert_calls == [MEMBERS, EVENTS]
    assert store.get(ATTENDANCE, attendance.local_id).sync_status == "pending"

    second = engine.sync()

    assert second.success is True
    assert second.processed_count == 2
    saved_member = store.get(MEMBERS, member.local_id)
    saved = store.get(ATTENDANCE, attendance.local_id)
    assert remote.tables[ATTENDANCE][saved.remote_id]["member_id"] == saved_member.remote_id


def test_idempotence_second_sync(engine, store, remote):
    """Deux sync d'affilée : le second ne pousse rien et ne duplique rien."""
    member = store.record(ACTION_CREATE, make_member())
    event = store.record(ACTION_CREATE, make_event())
    store.record(ACTION_CREATE, make_attendance(member, event))
    engine.sync()
    before = {table: remote.count(table) for table in (MEMBERS, EVENTS, ATTENDANCE)}

    result = engine.sync()

    assert result.success is True
    assert result.processed_count == 0
    assert {table: remote.count(table) for table in (MEMBERS, EVENTS, ATTENDANCE)} == before
    assert store.count(MEMBERS) == 1


def test_update_et_delete_pousses(engine, store, remote):
    member, _ = seed_member_and_event(store, engine)

    store.record(ACTION_UPDATE, member.model_copy(update={"phone": "0470000000"}))
    engine.sync()
    assert remote.tables[MEMBERS][member.remote_id]["phone"] == "0470000000"

    store.delete(MEMBERS, member.local_id)
    result = engine.sync()
    assert result.success is True
    assert remote.count(MEMBERS) == 0


def test_update_avant_premier_push(engine, store, remote):
    """create + update en file : l'update utilise le remote_id obtenu par le create."""
    member = store.record(ACTION_CREATE, make_member())
    store.record(ACTION_UPDATE, member.model_copy(update={"phone": "123"}))

    result = engine.sync()

    saved = store.get(MEMBERS, member.local_id)
    assert result.processed_count == 2
    assert saved.sync_status == "synced"
    assert remote.tables[MEMBERS][saved.remote_id]["phone"] == "123"
    assert remote.count(MEMBERS) == 1


# ============================================================
# Présences en double
# ============================================================

def test_presence_deja_sur_le_serveur(engine, store, remote):
    """Doublon (23505) → ligne locale synced sur la ligne distante existante, sans erreur."""
    member, event = seed_member_and_event(store, engine)
    existing = remote.insert(ATTENDANCE, {
        "member_id": member.remote_id, "event_id": event.remote_id,
        "check_in_at": "2026-03-01T09:50:00", "status": "early", "method": "manual",
    })
    attendance = store.record(ACTION_CREATE, make_attendance(member, event))

    result = engine.sync()

    saved = store.get(ATTENDANCE, attendance.local_id)
    assert result.success is True
    assert result.errors == []
    assert remote.count(ATTENDANCE) == 1
    assert saved.remote_id == existing["id"]
    assert saved.sync_status == "synced"
    assert store.count(ATTENDANCE) == 1


def test_doublon_sans_ligne_distante_reessaye(engine, store, remote):
    """23505 mais la ligne existante a disparu entre-temps → entrée conservée, pas de synced sans remote_id."""
    member, event = seed_member_and_event(store, engine)
    attendance = store.record(ACTION_CREATE, make_attendance(member, event))
    original_insert = remote.insert

    def insert(table, row):
        if table == ATTENDANCE:
            raise RemoteStoreError("doublon", code=UNIQUE_VIOLATION, status_code=409)
        return original_insert(table, row)

    remote.insert = insert

    result = engine.sync()

    saved = store.get(ATTENDANCE, attendance.local_id)
    assert result.errors == []
    assert saved.remote_id is None
    assert saved.sync_status == "pending"
    assert engine.queue.pending_count() == 1
    assert engine.queue.entries()[0].retry_count == 1

    remote.insert = original_insert
    assert engine.sync().success is True
    assert store.get(ATTENDANCE, attendance.local_id).remote_id is not None


@pytest.mark.parametrize("order", ["a_puis_b", "b_puis_a"])
def test_convergence_deux_appareils(store, second_store, remote, order):
    """Deux appareils pointent (M, E) hors ligne → une seule ligne distante, deux réplicas synced."""
    engine_a = SyncEngine(store, remote)
    engine_b = SyncEngine(second_store, remote)
    member_a, event_a = seed_member_and_event(store, engine_a)
    engine_b.sync()
    member_b = second_store.get_by_remote_id(MEMBERS, member_a.remote_id)
    event_b = second_store.get_by_remote_id(EVENTS, event_a.remote_id)

    store.record(ACTION_CREATE, make_attendance(member_a, event_a, status="early"))
    second_store.record(ACTION_CREATE, make_attendance(member_b, event_b, status="late"))

    engines = [engine_a, engine_b] if order == "a_puis_b" else [engine_b, engine_a]
    for engine in engines + engines:
        assert engine.sync().success is True

    assert remote.count(ATTENDANCE) == 1
    remote_id = next(iter(remote.tables[ATTENDANCE]))
    for device in (store, second_store):
        rows = device.all(ATTENDANCE)
        assert len(rows) == 1
        assert rows[0].remote_id == remote_id
        assert rows[0].sync_status == "synced"


# ============================================================
# Échecs
# ============================================================

def test_cinq_echecs_consecutifs(store):
    """Après le 5e échec : entrée toujours en file, listée dans errors, entité en error."""
    remote = FlakyRemote(failures={MEMBERS: 100})
    engine = SyncEngine(store, remote)
    member = store.record(ACTION_CREATE, make_member())

    for attempt in range(4):
        result = engine.sync()
        assert result.errors == []
        assert result.processed_count == 0

    result = engine.sync()

    assert result.success is False
    assert len(result.errors) == 1
    assert "5 tentatives" in result.errors[0]
    assert engine.queue.pending_count() == 1
    assert engine.queue.entries()[0].retry_count == 5
    assert store.get(MEMBERS, member.local_id).sync_status == "error"
    assert engine.status().failed_count == 1


def test_echec_pull_ne_fait_pas_avancer_le_dernier_sync(store):
    remote = MagicMock(spec=RemoteStore)

    def select(table, since, inclusive=False):
        if table == EVENTS:
            raise RemoteStoreError("timeout")
        return []

    remote.select_updated_since.side_effect = select
    engine = SyncEngine(store, remote)

    result = engine.sync()

    assert result.success is False
    assert any(EVENTS in error for error in result.errors)
    assert store.get_last_sync() is None


def test_erreur_ecriture_locale_remonte(engine, store):
    """Une erreur d'écriture locale n'est pas transformée en échec « retryable »."""
    store.record(ACTION_CREATE, make_member())
    engine.store = MagicMock(wraps=store)
    engine.store.mark_synced.side_effect = RuntimeError("disque plein")

    with pytest.raises(RuntimeError):
        engine.sync()
    assert engine.state == SyncState.IDLE


# ============================================================
# Fenêtre de pull
# ============================================================

def test_fenetre_premier_sync_limitee(store):
    """Premier sync, aucune présence locale : présences limitées aux 30 derniers jours."""
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    remote = MagicMock(spec=RemoteStore)
    remote.select_updated_since.return_value = []
    engine = SyncEngine(store, remote, clock=lambda: now)

    engine.sync()

    calls = {c.args[0]: c.args[1:] for c in remote.select_updated_since.call_args_list}
    assert calls[MEMBERS] == (EPOCH, False)
    assert calls[EVENTS] == (EPOCH, False)
    assert calls[ATTENDANCE] == (now - timedelta(days=30), True)
    assert store.get_last_sync() == now


def test_fenetre_sync_suivant(store):
    """Après un premier sync, les trois tables partent du dernier sync (exclusif)."""
    last = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    store.set_last_sync(last)
    remote = MagicMock(spec=RemoteStore)
    remote.select_updated_since.return_value = []
    engine = SyncEngine(store, remote, clock=lambda: last + timedelta(hours=1))

    engine.sync()

    calls = {c.args[0]: c.args[1:] for c in remote.select_updated_since.call_args_list}
    assert set(calls.values()) == {(last, False)}
    assert store.get_last_sync() == last + timedelta(hours=1)


def test_aller_retour_second_appareil(engine, store, second_store, remote):
    """Créé sur A, poussé, puis tiré sur B → entité équivalente, synced, remote_id renseigné."""
    member = store.record(ACTION_CREATE, make_member(phone="0470123456", email="alice@eglise-lumiere.be"))
    engine.sync()

    SyncEngine(second_store, remote).sync()

    pulled = second_store.all(MEMBERS)
    assert len(pulled) == 1
    assert pulled[0].sync_status == "synced"
    assert pulled[0].remote_id == store.get(MEMBERS, member.local_id).remote_id
    assert pulled[0].client_uuid == member.client_uuid
    assert (pulled[0].full_name, pulled[0].phone, pulled[0].email) == (
        "Alice Martin", "0470123456", "alice@eglise-lumiere.be",
    )


# ============================================================
# Contrôle d'exécution
# ============================================================

def test_hors_ligne_aucun_changement(store, remote):
    """Moniteur hors ligne : refus immédiat, file et store distant intacts."""
    monitor = MagicMock()
    monitor.should_sync.return_value = False
    engine = SyncEngine(store, remote, monitor=monitor)
    store.record(ACTION_CREATE, make_member())

    result = engine.sync()

    assert result.success is False
    assert result.errors == [ERROR_OFFLINE]
    assert engine.queue.pending_count() == 1
    assert remote.count(MEMBERS) == 0
    assert store.get_last_sync() is None


def test_sync_force_ignore_le_moniteur(store, remote):
    monitor = MagicMock()
    monitor.should_sync.return_value = False
    engine = SyncEngine(store, remote, monitor=monitor)
    store.record(ACTION_CREATE, make_member())

    result = engine.sync(force=True)

    assert result.success is True
    assert remote.count(MEMBERS) == 1


def test_execution_unique(store):
    """Un sync lancé pendant un sync en cours est refusé immédiatement."""
    inner_results = []

    class ReentrantRemote(InMemoryRemoteStore):
        def insert(self, table, row):
            inner_results.append(engine.sync())
            return super().insert(table, row)

    engine = SyncEngine(store, ReentrantRemote())
    store.record(ACTION_CREATE, make_member())

    outer = engine.sync()

    assert outer.success is True
    assert len(inner_results) == 1
    assert inner_results[0].success is False
    assert inner_results[0].errors == [ERROR_ALREADY_SYNCING]
    assert engine.is_syncing is False


def test_annulation_entre_deux_entrees(store):
    """abort() pendant le push : l'entrée en cours se termine, les suivantes restent en file."""

    class AbortingRemote(InMemoryRemoteStore):
        aborted = False

        def insert(self, table, row):
            if not self.aborted:
                self.aborted = True
                engine.abort()
            return super().insert(table, row)

    remote = AbortingRemote()
    engine = SyncEngine(store, remote)
    for name in ("Alice", "Bruno", "Chloé"):
        store.record(ACTION_CREATE, make_member(name))
    states = []
    engine.subscribe(states.append)

    result = engine.sync()

    assert result.success is False
    assert result.errors == [ERROR_ABORTED]
    assert result.processed_count == 1
    assert remote.count(MEMBERS) == 1
    assert engine.queue.pending_count() == 2
    assert states == [SyncState.SYNCING, SyncState.ABORTING, SyncState.IDLE]
    assert store.get_last_sync() is None

    # Le sync suivant reprend normalement
    assert engine.sync().processed_count == 2


def test_abort_sans_sync_en_cours(engine):
    engine.abort()
    assert engine.state == SyncState.IDLE


def test_desabonnement(engine):
    states = []
    unsubscribe = engine.subscribe(states.append)
    unsubscribe()

    engine.sync()

    assert states == []


def test_statut_file(engine, store):
    store.record(ACTION_CREATE, make_member())

    status = engine.status()

    assert status.pending_count == 1
    assert status.failed_count == 0
    assert status.syncing is False
    assert status.is_online is True
    assert status.last_sync is None
