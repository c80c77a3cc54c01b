"""
Service métier du store distant de référence (côté serveur).

- Insertion idempotente : un client_uuid déjà connu renvoie la ligne existante
- Violation d'unicité (présence membre/événement en double, QR déjà attribué)
  → UniqueViolation, code 23505
- updated_at est toujours attribué par le serveur : c'est l'horloge du pull
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_sync.common.datetime_utils import as_utc, utcnow
from attendance_sync.exceptions import UNIQUE_VIOLATION
from attendance_sync.models.server import RemoteAttendance, RemoteEvent, RemoteMember
from attendance_sync.schemas.entities import ATTENDANCE, EVENTS, MEMBERS
from attendance_sync.schemas.remote import (
    AttendanceIn,
    AttendanceOut,
    EventIn,
    EventOut,
    MemberIn,
    MemberOut,
)

logger = logging.getLogger(__name__)

TABLES: Dict[str, Tuple[Type, Type[BaseModel], Type[BaseModel]]] = {
    MEMBERS: (RemoteMember, MemberIn, MemberOut),
    EVENTS: (RemoteEvent, EventIn, EventOut),
    ATTENDANCE: (RemoteAttendance, AttendanceIn, AttendanceOut),
}

# Champs jamais modifiés par un PATCH
IMMUTABLE_FIELDS = {"id", "client_uuid", "created_at", "updated_at"}


class UniqueViolation(ValueError):
    """Contrainte d'unicité violée (équivalent du code PostgreSQL 23505)."""

    code = UNIQUE_VIOLATION


def _server_now() -> datetime:
    # Colonnes DateTime naive : UTC implicite
    return utcnow().replace(tzinfo=None)


def _naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def _table(table: str):
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Table {table} introuvable.")


def _commit(db: Session, table: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Contrainte d'unicité violée sur %s : %s", table, exc.orig)
        raise UniqueViolation(f"Ligne en double dans {table} (contrainte d'unicité).")


def to_out(table: str, row) -> Dict[str, Any]:
    _, _, schema_out = _table(table)
    return schema_out.model_validate(row).model_dump(mode="json")


def insert_row(db: Session, table: str, data: Dict[str, Any]):
    """Insère une ligne et la retourne ; rejoue sans effet un client_uuid déjà inséré."""
    model, schema_in, _ = _table(table)
    payload = schema_in.model_validate(data)

    if payload.client_uuid:
        existing = db.execute(
            select(model).where(model.client_uuid == payload.client_uuid)
        ).scalar()
        if existing is not None:
            logger.info("Insertion %s rejouée (client_uuid %s)", table, payload.client_uuid)
            return existing

    values = payload.model_dump()
    if values["created_at"] is not None:
        values["created_at"] = _naive_utc(values["created_at"])
    if "check_in_at" in values:
        values["check_in_at"] = _naive_utc(values["check_in_at"])

    row = model(**values, updated_at=_server_now())
    db.add(row)
    _commit(db, table)
    db.refresh(row)
    logger.info("Ligne %s créée : %s", table, row.id)
    return row


def get_row(db: Session, table: str, row_id: str):
    model, _, _ = _table(table)
    return db.get(model, row_id)


def update_row(db: Session, table: str, row_id: str, changes: Dict[str, Any]):
    """
    Mise à jour partielle : la ligne fusionnée est re-validée avant écriture.
    Lève ValueError si la ligne est introuvable.
    """
    model, schema_in, schema_out = _table(table)
    row = db.get(model, row_id)
    if row is None:
        raise ValueError(f"Ligne {table} {row_id} introuvable.")

    current = schema_out.model_validate(row).model_dump()
    changes = {k: v for k, v in changes.items() if k not in IMMUTABLE_FIELDS}
    merged = schema_in.model_validate({**current, **changes}).model_dump()

    for field, value in merged.items():
        if field in IMMUTABLE_FIELDS:
            continue
        if field == "check_in_at":
            value = _naive_utc(value)
        setattr(row, field, value)
    row.updated_at = _server_now()

    _commit(db, table)
    db.refresh(row)
    return row


def delete_row(db: Session, table: str, row_id: str) -> bool:
    """Suppression idempotente ; retourne False si la ligne n'existait déjà plus."""
    model, _, _ = _table(table)
    row = db.get(model, row_id)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    logger.info("Ligne %s supprimée : %s", table, row_id)
    return True


def rows_updated_after(
    db: Session, table: str, since: Optional[datetime] = None, inclusive: bool = False
) -> List:
    """Lignes modifiées après since (ou à partir de since si inclusive), plus anciennes d'abord."""
    model, _, _ = _table(table)
    query = select(model).order_by(model.updated_at)
    if since is not None:
        bound = _naive_utc(since)
        query = query.where(model.updated_at >= bound if inclusive else model.updated_at > bound)
    return db.execute(query).scalars().all()


def find_attendance(db: Session, member_id: str, event_id: str) -> Optional[RemoteAttendance]:
    return db.execute(
        select(RemoteAttendance).where(
            RemoteAttendance.member_id == member_id,
            RemoteAttendance.event_id == event_id,
        )
    ).scalar()
