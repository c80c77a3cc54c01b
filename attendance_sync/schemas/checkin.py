"""
Schéma Pydantic du résultat d'un check-in (scan QR ou saisie manuelle).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from attendance_sync.schemas.entities import AttendanceRecord, MemberRecord


class CheckInResult(BaseModel):
    """Rapport affiché par l'écran de pointage après chaque scan."""
    success: bool
    message: str
    member: Optional[MemberRecord] = None
    attendance: Optional[AttendanceRecord] = None
    status: Optional[str] = None
    already_checked_in: bool = False
    previous_check_in: Optional[datetime] = None
