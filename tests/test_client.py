"""
Tests de l'assemblage du client (store + moteur + moniteur).
"""

from unittest.mock import MagicMock

import pytest

from attendance_sync.client import create_client
from attendance_sync.database import make_engine, make_session_factory
from attendance_sync.exceptions import PendingSyncError, RemoteStoreError
from attendance_sync.remote.memory_store import InMemoryRemoteStore
from attendance_sync.schemas.sync import ACTION_CREATE
from conftest import make_member


@pytest.fixture
def sync_client(tmp_path):
    factory = make_session_factory(make_engine(f"sqlite:///{tmp_path / 'client.db'}"))
    monitor = MagicMock()
    monitor.should_sync.return_value = True
    return create_client(session_factory=factory, remote=InMemoryRemoteStore(), monitor=monitor)


def test_client_initialise(sync_client):
    """Tables créées, device_id attribué, moteur câblé sur le même store."""
    assert sync_client.store.device_id
    assert sync_client.engine.store is sync_client.store
    assert sync_client.engine.sync().success is True


def test_deconnexion_synchronise_puis_arrete(sync_client):
    sync_client.store.record(ACTION_CREATE, make_member())

    sync_client.sign_out()

    assert sync_client.remote.count("members") == 1
    sync_client.monitor.close.assert_called_once()


def test_deconnexion_refusee_sans_reseau(sync_client):
    sync_client.remote = MagicMock()
    sync_client.engine.remote = sync_client.remote
    sync_client.remote.insert.side_effect = RemoteStoreError("timeout")
    sync_client.remote.select_updated_since.return_value = []
    sync_client.store.record(ACTION_CREATE, make_member())

    with pytest.raises(PendingSyncError):
        sync_client.sign_out()

    sync_client.monitor.close.assert_not_called()
