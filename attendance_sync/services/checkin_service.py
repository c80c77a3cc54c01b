"""
Service métier du pointage (scan QR, saisie manuelle, absence).

Toutes les écritures passent par LocalStore.record() : la présence est visible
immédiatement dans l'UI et la création est mise en file pour le prochain sync.

Classification par rapport à l'heure de début de l'événement :
- plus de 15 minutes avant → early
- jusqu'à 15 minutes après → on-time
- au-delà → late (pas de fenêtre de clôture)
"""

import logging
from datetime import datetime
from typing import Optional

from attendance_sync.common.datetime_utils import now_local
from attendance_sync.schemas.checkin import CheckInResult
from attendance_sync.schemas.entities import (
    ATTENDANCE,
    AttendanceRecord,
    EventRecord,
    MemberRecord,
)
from attendance_sync.schemas.sync import ACTION_CREATE, ACTION_UPDATE
from attendance_sync.services.local_store import LocalStore

logger = logging.getLogger(__name__)

EARLY_THRESHOLD_MINUTES = 15
LATE_THRESHOLD_MINUTES = 15


def event_start_datetime(event: EventRecord) -> datetime:
    return datetime.combine(event.event_date, event.start_time)


def classify_check_in(event_start: datetime, check_in_time: datetime) -> str:
    """Retourne early / on-time / late (écart arrondi à la minute inférieure)."""
    diff_minutes = (check_in_time - event_start).total_seconds() // 60
    if diff_minutes < -EARLY_THRESHOLD_MINUTES:
        return "early"
    if diff_minutes <= LATE_THRESHOLD_MINUTES:
        return "on-time"
    return "late"


def _new_attendance(
    member: MemberRecord,
    event: EventRecord,
    check_in_at: datetime,
    status: str,
    method: str,
    notes: Optional[str] = None,
) -> AttendanceRecord:
    return AttendanceRecord(
        member_local_id=member.local_id,
        member_remote_id=member.remote_id,
        event_local_id=event.local_id,
        event_remote_id=event.remote_id,
        check_in_at=check_in_at,
        status=status,
        method=method,
        notes=notes,
    )


def _already_recorded(store: LocalStore, member: MemberRecord, event: EventRecord) -> Optional[CheckInResult]:
    existing = store.has_checked_in(member, event)
    if existing is None:
        return None
    return CheckInResult(
        success=False,
        already_checked_in=True,
        member=member,
        attendance=existing,
        previous_check_in=existing.check_in_at,
        message=f"Déjà pointé à {existing.check_in_at:%H:%M}",
    )


def check_in_member(
    store: LocalStore,
    member: MemberRecord,
    event: Optional[EventRecord] = None,
    method: str = "manual",
    now: Optional[datetime] = None,
) -> CheckInResult:
    """
    Pointe un membre pour l'événement du jour (ou l'événement fourni).
    Un second pointage du même membre pour le même événement est refusé.
    """
    now = now or now_local()
    event = event or store.get_today_event(now.date())
    if event is None:
        return CheckInResult(success=False, member=member, message="Aucun événement actif aujourd'hui")

    duplicate = _already_recorded(store, member, event)
    if duplicate is not None:
        return duplicate

    status = classify_check_in(event_start_datetime(event), now)
    attendance = store.record(ACTION_CREATE, _new_attendance(member, event, now, status, method))
    logger.info("Check-in %s : %s (%s)", method, member.full_name, status)

    return CheckInResult(
        success=True,
        member=member,
        attendance=attendance,
        status=status,
        message=f"{member.full_name} - {status}",
    )


def check_in_by_qr(store: LocalStore, qr_code: str, now: Optional[datetime] = None) -> CheckInResult:
    """Scan QR : résolution du membre dans le store local puis pointage."""
    member = store.get_member_by_qr(qr_code.strip())
    if member is None:
        logger.warning("QR code inconnu : %s", qr_code)
        return CheckInResult(success=False, message="QR code non reconnu")
    return check_in_member(store, member, method="qr-scan", now=now)


def mark_absent(
    store: LocalStore,
    member: MemberRecord,
    event: Optional[EventRecord] = None,
    notes: str = "Marqué absent par le secrétariat",
    now: Optional[datetime] = None,
) -> CheckInResult:
    now = now or now_local()
    event = event or store.get_today_event(now.date())
    if event is None:
        return CheckInResult(success=False, member=member, message="Aucun événement actif aujourd'hui")

    duplicate = _already_recorded(store, member, event)
    if duplicate is not None:
        return duplicate

    attendance = store.record(
        ACTION_CREATE, _new_attendance(member, event, now, "absent", "manual", notes=notes)
    )
    return CheckInResult(
        success=True,
        member=member,
        attendance=attendance,
        status="absent",
        message=f"{member.full_name} - absent",
    )


def update_attendance(
    store: LocalStore,
    local_id: int,
    status: Optional[str] = None,
    notes: Optional[str] = None,
    is_excused: Optional[bool] = None,
) -> AttendanceRecord:
    """
    Corrige une présence existante (statut, excuse, notes).
    Seuls les champs fournis sont modifiés. Lève ValueError si la présence est introuvable.
    """
    current = store.get(ATTENDANCE, local_id)
    if current is None:
        raise ValueError(f"Présence {local_id} introuvable.")

    changes = {}
    if status is not None:
        changes["status"] = status
    if notes is not None:
        changes["notes"] = notes
    if is_excused is not None:
        changes["is_excused"] = is_excused

    # Re-validation complète (statut inconnu → ValueError via pydantic)
    updated = AttendanceRecord.model_validate({**current.model_dump(), **changes})
    return store.record(ACTION_UPDATE, updated)
