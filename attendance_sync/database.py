"""
Connexions SQLAlchemy.

- Base locale (SQLite sur l'appareil) : entités, file de synchronisation, paramètres.
- Base serveur : tables du store distant de référence (service FastAPI).

Les deux schémas utilisent des bases déclaratives distinctes : les tables
members / events / attendance existent des deux côtés avec des colonnes différentes.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from attendance_sync.config import settings


def make_engine(url: str):
    """Crée un moteur SQLAlchemy ; SQLite est partagé entre le thread UI et le scheduler."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# --- Base locale (client offline-first) ---

engine = make_engine(settings.LOCAL_DATABASE_URL)

SessionLocal = make_session_factory(engine)

Base = declarative_base()


def init_local_db(bind=None) -> None:
    """Crée les tables locales si elles n'existent pas encore."""
    import attendance_sync.models  # noqa: F401 (enregistre les modèles dans Base.metadata)

    Base.metadata.create_all(bind=bind or engine)


# --- Base serveur (store distant de référence) ---

server_engine = make_engine(settings.REMOTE_DATABASE_URL)

ServerSessionLocal = make_session_factory(server_engine)

ServerBase = declarative_base()


def init_server_db(bind=None) -> None:
    """Crée les tables du store distant si elles n'existent pas encore."""
    import attendance_sync.models.server  # noqa: F401

    ServerBase.metadata.create_all(bind=bind or server_engine)


def get_db():
    """Dépendance FastAPI : fournit une session BDD serveur et la ferme après usage."""
    db = ServerSessionLocal()
    try:
        yield db
    finally:
        db.close()
