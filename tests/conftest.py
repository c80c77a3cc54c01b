"""
Configuration partagée pour tous les tests.
Chaque test reçoit ses propres bases SQLite (fichiers sous tmp_path) :
aucune dépendance aux bases définies dans .env.
"""

from datetime import date, datetime, time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from attendance_sync.database import get_db, init_local_db, init_server_db, make_engine, make_session_factory
from attendance_sync.main import app
from attendance_sync.remote.memory_store import InMemoryRemoteStore
from attendance_sync.schemas.entities import AttendanceRecord, EventRecord, MemberRecord
from attendance_sync.services.local_store import LocalStore
from attendance_sync.services.sync_engine import SyncEngine


def make_store(path) -> LocalStore:
    """Store local sur un fichier SQLite neuf (un par « appareil »)."""
    engine = make_engine(f"sqlite:///{path}")
    init_local_db(bind=engine)
    store = LocalStore(make_session_factory(engine))
    store.initialize_settings()
    return store


def make_member(name="Alice Martin", **kwargs) -> MemberRecord:
    return MemberRecord(full_name=name, **kwargs)


def make_event(title="Culte du dimanche", event_date=None, start_time=None, **kwargs) -> EventRecord:
    return EventRecord(
        title=title,
        event_date=event_date or date(2026, 3, 1),
        start_time=start_time or time(10, 0),
        **kwargs,
    )


def make_attendance(member, event, status="on-time") -> AttendanceRecord:
    """Présence référençant les deux identifiants connus du membre et de l'événement."""
    return AttendanceRecord(
        member_local_id=member.local_id,
        member_remote_id=member.remote_id,
        event_local_id=event.local_id,
        event_remote_id=event.remote_id,
        check_in_at=datetime(2026, 3, 1, 9, 58),
        status=status,
    )

@pytest.fixture
def store(tmp_path):
    return make_store(tmp_path / "device_a.db")


@pytest.fixture
def second_store(tmp_path):
    return make_store(tmp_path / "device_b.db")


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def engine(store, remote):
    """Moteur sans moniteur : toujours considéré en ligne."""
    return SyncEngine(store, remote)


@pytest.fixture
def server_session_factory(tmp_path):
    server_engine = make_engine(f"sqlite:///{tmp_path / 'server.db'}")
    init_server_db(bind=server_engine)
    return make_session_factory(server_engine)


@pytest.fixture
def client(server_session_factory):
    """Client HTTP de test du store distant, sur une base SQLite dédiée."""

    def override_get_db():
        db = server_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with patch("attendance_sync.main.init_server_db"), TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
