"""
Store local offline-first (SQLite via SQLAlchemy).

Responsabilités :
- CRUD durable sur members / events / attendance, file de synchronisation et paramètres
- Double adressage : une entité se retrouve par remote_id (prioritaire) ou par local_id
- Écriture optimiste + ajout en file dans UNE transaction (record / delete)
- Fusion des lignes distantes lors du pull (merge_remote)

Aucune erreur d'écriture n'est avalée : une SQLAlchemyError remonte à l'appelant.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, Union

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from attendance_sync.common.datetime_utils import parse_timestamp, utcnow
from attendance_sync.database import SessionLocal
from attendance_sync.models import Attendance, Event, Member, Setting
from attendance_sync.schemas.entities import (
    ATTENDANCE,
    EVENTS,
    MEMBERS,
    SYNC_PENDING,
    SYNC_SYNCED,
    AttendanceRecord,
    EntityRecord,
    EventRecord,
    MemberRecord,
    record_class,
)
from attendance_sync.schemas.sync import ACTION_CREATE, ACTION_DELETE, ACTION_UPDATE
from attendance_sync.services.sync_queue import count_other_entries, discard_entries, stage_entry

logger = logging.getLogger(__name__)

MODELS: Dict[str, Type] = {MEMBERS: Member, EVENTS: Event, ATTENDANCE: Attendance}

# Clés naturelles autorisées pour find_by_natural_key (QR, date, clés étrangères…)
NATURAL_KEYS = {
    MEMBERS: {"qr_code", "phone", "email", "full_name", "status", "role", "sync_status"},
    EVENTS: {"event_date", "status", "title", "sync_status"},
    ATTENDANCE: {
        "member_local_id", "member_remote_id", "event_local_id", "event_remote_id",
        "status", "method", "sync_status",
    },
}

# Ancien encodage des identifiants locaux dans les écrans (« local-42 »)
LOCAL_ID_PREFIX = "local-"

LAST_SYNC_KEY = "last_sync_timestamp"
DEVICE_ID_KEY = "device_id"


def _model(collection: str):
    try:
        return MODELS[collection]
    except KeyError:
        raise ValueError(f"Collection inconnue : {collection}")


def _to_record(collection: str, row) -> EntityRecord:
    return record_class(collection).model_validate(row)


def parse_local_reference(identifier: str) -> Optional[int]:
    """« local-42 » → 42 ; None si l'identifiant n'utilise pas l'encodage local."""
    if not identifier.startswith(LOCAL_ID_PREFIX):
        return None
    suffix = identifier[len(LOCAL_ID_PREFIX):]
    return int(suffix) if suffix.isdigit() else None


class LocalStore:
    """Accès transactionnel au store local, partagé entre l'UI et le moteur de sync."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session commitée en sortie, annulée (rollback) si une exception remonte."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Paramètres
    # ------------------------------------------------------------------

    def initialize_settings(self) -> None:
        """Crée les paramètres par défaut absents (device_id unique, pas de dernier sync)."""
        defaults = {LAST_SYNC_KEY: None, DEVICE_ID_KEY: str(uuid.uuid4())}
        with self.transaction() as db:
            for key, value in defaults.items():
                if db.get(Setting, key) is None:
                    db.add(Setting(key=key, value=value))

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self.transaction() as db:
            setting = db.get(Setting, key)
            return default if setting is None or setting.value is None else setting.value

    def set_setting(self, key: str, value: Any) -> None:
        with self.transaction() as db:
            setting = db.get(Setting, key)
            if setting is None:
                db.add(Setting(key=key, value=value))
            else:
                setting.value = value

    def get_last_sync(self) -> Optional[datetime]:
        return parse_timestamp(self.get_setting(LAST_SYNC_KEY))

    def set_last_sync(self, value: datetime) -> None:
        self.set_setting(LAST_SYNC_KEY, value.isoformat())

    @property
    def device_id(self) -> Optional[str]:
        return self.get_setting(DEVICE_ID_KEY)

    # ------------------------------------------------------------------
    # Lecture
    # ------------------------------------------------------------------

    def get(self, collection: str, local_id: int) -> Optional[EntityRecord]:
        with self.transaction() as db:
            row = db.get(_model(collection), local_id)
            return _to_record(collection, row) if row is not None else None

    def get_by_remote_id(self, collection: str, remote_id: str) -> Optional[EntityRecord]:
        model = _model(collection)
        with self.transaction() as db:
            row = db.execute(select(model).where(model.remote_id == remote_id)).scalar()
            return _to_record(collection, row) if row is not None else None

    def lookup(self, collection: str, identifier: Union[str, int]) -> Optional[EntityRecord]:
        """
        Double adressage : remote_id d'abord, puis local_id.
        Accepte un entier (local_id), un UUID distant, ou l'encodage « local-<n> ».
        """
        if isinstance(identifier, int):
            return self.get(collection, identifier)

        local_id = parse_local_reference(identifier)
        if local_id is not None:
            return self.get(collection, local_id)

        record = self.get_by_remote_id(collection, identifier)
        if record is None and identifier.isdigit():
            record = self.get(collection, int(identifier))
        return record

    def find_by_natural_key(self, collection: str, key: str, value: Any) -> List[EntityRecord]:
        """Lecture commitée par clé naturelle, triée par local_id."""
        model = _model(collection)
        if key not in NATURAL_KEYS[collection]:
            raise ValueError(f"Clé de recherche non autorisée pour {collection} : {key}")
        with self.transaction() as db:
            rows = db.execute(
                select(model).where(getattr(model, key) == value).order_by(model.local_id)
            ).scalars().all()
            return [_to_record(collection, row) for row in rows]

    def all(self, collection: str) -> List[EntityRecord]:
        model = _model(collection)
        with self.transaction() as db:
            rows = db.execute(select(model).order_by(model.local_id)).scalars().all()
            return [_to_record(collection, row) for row in rows]

    def count(self, collection: str) -> int:
        model = _model(collection)
        with self.transaction() as db:
            return db.execute(select(func.count()).select_from(model)).scalar() or 0

    def get_member_by_qr(self, qr_code: str) -> Optional[MemberRecord]:
        members = self.find_by_natural_key(MEMBERS, "qr_code", qr_code)
        return members[0] if members else None

    def search_members(self, query: str) -> List[MemberRecord]:
        """Recherche par nom (insensible à la casse) ou par téléphone."""
        pattern = f"%{query.strip().lower()}%"
        with self.transaction() as db:
            rows = db.execute(
                select(Member)
                .where(or_(func.lower(Member.full_name).like(pattern), Member.phone.like(pattern)))
                .order_by(Member.full_name)
            ).scalars().all()
            return [_to_record(MEMBERS, row) for row in rows]

    def get_today_event(self, today: Optional[date] = None) -> Optional[EventRecord]:
        """Événement du jour encore ouvert (upcoming ou active)."""
        today = today or date.today()
        with self.transaction() as db:
            row = db.execute(
                select(Event)
                .where(Event.event_date == today, Event.status.in_(["upcoming", "active"]))
                .order_by(Event.start_time, Event.local_id)
            ).scalars().first()
            return _to_record(EVENTS, row) if row is not None else None

    def has_checked_in(self, member: MemberRecord, event: EventRecord) -> Optional[AttendanceRecord]:
        """
        Présence existante pour (membre, événement), quel que soit l'identifiant
        disponible de chaque côté : remote_id si connu, sinon local_id.
        """
        member_refs = [Attendance.member_local_id == member.local_id]
        if member.remote_id:
            member_refs.append(Attendance.member_remote_id == member.remote_id)
        event_refs = [Attendance.event_local_id == event.local_id]
        if event.remote_id:
            event_refs.append(Attendance.event_remote_id == event.remote_id)

        with self.transaction() as db:
            row = db.execute(
                select(Attendance).where(or_(*member_refs), or_(*event_refs)).order_by(Attendance.local_id)
            ).scalars().first()
            return _to_record(ATTENDANCE, row) if row is not None else None

    def resolve_attendance_for_event(
        self,
        event_id: Union[str, int],
        event_local_id: Optional[int] = None,
    ) -> List[AttendanceRecord]:
        """
        Présences d'un événement :
        1. par event_remote_id
        2. sinon par event_local_id (fourni ou identifiant entier)
        3. sinon par l'ancien encodage « local-<n> »
        """
        if isinstance(event_id, int):
            event_local_id = event_local_id or event_id
        else:
            rows = self.find_by_natural_key(ATTENDANCE, "event_remote_id", event_id)
            if rows:
                return rows

        if event_local_id:
            rows = self.find_by_natural_key(ATTENDANCE, "event_local_id", event_local_id)
            if rows:
                return rows

        if isinstance(event_id, str):
            legacy_id = parse_local_reference(event_id)
            if legacy_id is not None:
                return self.find_by_natural_key(ATTENDANCE, "event_local_id", legacy_id)
        return []

    def attendance_for_member(self, member: MemberRecord) -> List[AttendanceRecord]:
        """Historique de présence d'un membre, du plus récent au plus ancien."""
        refs = [Attendance.member_local_id == member.local_id]
        if member.remote_id:
            refs.append(Attendance.member_remote_id == member.remote_id)
        with self.transaction() as db:
            rows = db.execute(
                select(Attendance).where(or_(*refs)).order_by(Attendance.check_in_at.desc())
            ).scalars().all()
            return [_to_record(ATTENDANCE, row) for row in rows]

    # ------------------------------------------------------------------
    # Écriture
    # ------------------------------------------------------------------

    def put(self, record: EntityRecord) -> int:
        """
        Persiste un enregistrement (sans ajout en file) et retourne son local_id.
        Attribue un local_id si absent ; ne remplace jamais un remote_id existant.
        """
        with self.transaction() as db:
            return self._put(db, record)

    def _put(self, db: Session, record: EntityRecord) -> int:
        model = _model(record.collection)
        values = record.model_dump(exclude={"local_id", "remote_id"})

        row = db.get(model, record.local_id) if record.local_id is not None else None
        if row is None:
            row = model(**values, remote_id=record.remote_id)
            db.add(row)
        else:
            values.pop("client_uuid")
            if values["created_at"] is None:
                values.pop("created_at")
            for field, value in values.items():
                setattr(row, field, value)
            if row.remote_id is None and record.remote_id is not None:
                row.remote_id = record.remote_id

        db.flush()  # Obtenir le local_id avant le commit
        return row.local_id

    def enqueue(self, table: str, action: str, payload: Any) -> int:
        """Ajoute une mutation à la file (transaction propre) ; retourne l'ID de l'entrée."""
        with self.transaction() as db:
            return stage_entry(db, table, action, payload).id

    def record(self, action: str, record: EntityRecord) -> EntityRecord:
        """
        Écriture optimiste d'une mutation UI : entité + entrée de file dans la même
        transaction (les deux réussissent ou aucune). Retourne l'instantané persisté.

        Pour un update, passer l'enregistrement complet (get() puis model_copy) :
        tous les champs métier sont réécrits.
        """
        if action not in (ACTION_CREATE, ACTION_UPDATE):
            raise ValueError(f"Action non supportée par record() : {action} (utiliser delete())")

        collection = record.collection
        now = utcnow()
        updates = {"updated_at": now, "sync_status": SYNC_PENDING}
        if action == ACTION_CREATE:
            updates["created_at"] = record.created_at or now
        record = record.model_copy(update=updates)

        with self.transaction() as db:
            local_id = self._put(db, record)
            saved = _to_record(collection, db.get(_model(collection), local_id))
            stage_entry(db, collection, action, saved, depends_on=self._dependencies(saved, action))

        logger.debug("Écriture locale %s %s #%d (en attente de sync)", action, collection, local_id)
        return saved

    def delete(self, collection: str, local_id: int) -> bool:
        """
        Suppression locale immédiate.
        - Entité déjà connue du serveur → ajout d'une entrée delete en file
        - Entité jamais poussée → ses entrées en file sont simplement retirées
        Retourne False si l'entité n'existe pas.
        """
        model = _model(collection)
        with self.transaction() as db:
            row = db.get(model, local_id)
            if row is None:
                return False

            snapshot = _to_record(collection, row)
            db.delete(row)
            if snapshot.remote_id is None:
                removed = discard_entries(db, collection, local_id)
                logger.debug("Suppression %s #%d jamais synchronisé : %d entrée(s) retirée(s)",
                             collection, local_id, removed)
            else:
                stage_entry(db, collection, ACTION_DELETE, snapshot)
        return True

    @staticmethod
    def _dependencies(record: EntityRecord, action: str) -> List[Tuple[str, int]]:
        """Entités dont la création doit être poussée avant cette mutation."""
        deps: List[Tuple[str, int]] = []
        if isinstance(record, AttendanceRecord):
            if record.member_remote_id is None and record.member_local_id is not None:
                deps.append((MEMBERS, record.member_local_id))
            if record.event_remote_id is None and record.event_local_id is not None:
                deps.append((EVENTS, record.event_local_id))
        if action != ACTION_CREATE and record.remote_id is None:
            deps.append((record.collection, record.local_id))
        return deps

    # ------------------------------------------------------------------
    # Réconciliation (moteur de sync)
    # ------------------------------------------------------------------

    def mark_synced(
        self,
        collection: str,
        local_id: Optional[int],
        remote_id: Optional[str] = None,
        entry_id: Optional[int] = None,
        **fields: Any,
    ) -> bool:
        """
        Marque une entité « synced » après un push réussi et reporte le remote_id.

        Si une autre mutation de la même entité attend encore en file, l'entité
        reste « pending ». Si le remote_id appartient déjà à une autre ligne locale
        (présence récupérée par un pull avant le push), la ligne courante est un
        doublon local : elle est supprimée au profit de celle-ci.
        Retourne False si l'entité a été supprimée localement entre-temps.
        """
        if local_id is None:
            return False
        model = _model(collection)
        with self.transaction() as db:
            row = db.get(model, local_id)
            if row is None:
                return False

            if remote_id is not None and row.remote_id is None:
                holder = db.execute(select(model).where(model.remote_id == remote_id)).scalar()
                if holder is not None and holder.local_id != row.local_id:
                    logger.info("%s #%d fusionné avec la ligne locale #%d (remote %s)",
                                collection, local_id, holder.local_id, remote_id)
                    db.delete(row)
                    discard_entries(db, collection, local_id)
                    return True
                row.remote_id = remote_id

            for field, value in fields.items():
                setattr(row, field, value)

            if count_other_entries(db, collection, local_id, entry_id):
                row.sync_status = SYNC_PENDING
            else:
                row.sync_status = SYNC_SYNCED
            return True

    def mark_sync_status(self, collection: str, local_id: Optional[int], status: str) -> None:
        if local_id is None:
            return
        with self.transaction() as db:
            row = db.get(_model(collection), local_id)
            if row is not None:
                row.sync_status = status

    def merge_remote(self, record: EntityRecord) -> int:
        """
        Fusionne une ligne distante (pull), dernier écrit gagnant côté serveur.

        Recherche de la ligne locale : remote_id, puis client_uuid, puis (présences)
        couple membre/événement d'une ligne locale sans remote_id. Trouvée → champs
        écrasés ; sinon → nouvelle ligne. Dans tous les cas la ligne devient « synced ».
        """
        collection = record.collection
        model = _model(collection)
        with self.transaction() as db:
            if isinstance(record, AttendanceRecord):
                record = self._attach_local_references(db, record)

            row = db.execute(select(model).where(model.remote_id == record.remote_id)).scalar()
            if row is None:
                row = db.execute(
                    select(model).where(model.client_uuid == record.client_uuid)
                ).scalar()
            if row is None and isinstance(record, AttendanceRecord):
                row = self._unsynced_attendance_for(db, record)

            values = record.model_dump(exclude={"local_id"})
            values["sync_status"] = SYNC_SYNCED
            if row is None:
                row = model(**values)
                db.add(row)
            else:
                values.pop("client_uuid")
                for field in ("member_local_id", "event_local_id"):
                    if values.get(field, 0) is None:
                        values.pop(field)
                for field, value in values.items():
                    setattr(row, field, value)
            db.flush()
            return row.local_id

    @staticmethod
    def _attach_local_references(db: Session, record: AttendanceRecord) -> AttendanceRecord:
        """Complète member_local_id / event_local_id depuis les remote_ids reçus."""
        updates: Dict[str, Any] = {}
        if record.member_remote_id:
            updates["member_local_id"] = db.execute(
                select(Member.local_id).where(Member.remote_id == record.member_remote_id)
            ).scalar()
        if record.event_remote_id:
            updates["event_local_id"] = db.execute(
                select(Event.local_id).where(Event.remote_id == record.event_remote_id)
            ).scalar()
        return record.model_copy(update=updates)

    @staticmethod
    def _unsynced_attendance_for(db: Session, record: AttendanceRecord):
        if record.member_local_id is None or record.event_local_id is None:
            return None
        return db.execute(
            select(Attendance).where(
                Attendance.remote_id.is_(None),
                Attendance.member_local_id == record.member_local_id,
                Attendance.event_local_id == record.event_local_id,
            )
        ).scalars().first()
