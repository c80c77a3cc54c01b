"""
Router du store distant de référence : members, events, attendance.

Contrat consommé par HttpRemoteStore :
- POST   /api/{table}              insertion (201), idempotente par client_uuid
- PATCH  /api/{table}/{row_id}     mise à jour partielle
- DELETE /api/{table}/{row_id}     suppression idempotente (204)
- GET    /api/{table}?updated_after=…&inclusive=…   pull incrémental
- GET    /api/attendance/lookup?member_id=…&event_id=…
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from attendance_sync.database import get_db
from attendance_sync.services import remote_table_service
from attendance_sync.services.remote_table_service import UniqueViolation, to_out

router = APIRouter(prefix="/api", tags=["Store distant"])


def _error_response(e: ValueError):
    if isinstance(e, UniqueViolation):
        return JSONResponse(status_code=409, content={"detail": str(e), "code": e.code})
    msg = str(e)
    if "introuvable" in msg:
        raise HTTPException(status_code=404, detail=msg)
    raise HTTPException(status_code=400, detail=msg)


@router.get("/attendance/lookup", summary="Présence d'un membre à un événement")
def lookup_attendance(member_id: str, event_id: str, db: Session = Depends(get_db)):
    """Retourne la présence existante pour le couple (membre, événement), 404 sinon."""
    row = remote_table_service.find_attendance(db, member_id, event_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Présence introuvable.")
    return to_out("attendance", row)


@router.post("/{table}", status_code=201, summary="Insérer une ligne")
def insert_row(table: str, data: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    """
    Insère une ligne et la retourne avec son identifiant serveur.
    Un client_uuid déjà connu renvoie la ligne existante (rejeu sans doublon).
    Présence en double → 409 avec code 23505.
    """
    try:
        row = remote_table_service.insert_row(db, table, data)
    except ValueError as e:
        return _error_response(e)
    return to_out(table, row)


@router.get("/{table}", summary="Lignes modifiées depuis une date")
def list_rows(
    table: str,
    updated_after: Optional[datetime] = None,
    inclusive: bool = False,
    db: Session = Depends(get_db),
):
    try:
        rows = remote_table_service.rows_updated_after(db, table, updated_after, inclusive)
    except ValueError as e:
        return _error_response(e)
    return [to_out(table, row) for row in rows]


@router.get("/{table}/{row_id}", summary="Détail d'une ligne")
def get_row(table: str, row_id: str, db: Session = Depends(get_db)):
    try:
        row = remote_table_service.get_row(db, table, row_id)
    except ValueError as e:
        return _error_response(e)
    if row is None:
        raise HTTPException(status_code=404, detail="Ligne introuvable.")
    return to_out(table, row)


@router.patch("/{table}/{row_id}", summary="Modifier une ligne")
def update_row(
    table: str, row_id: str, changes: Dict[str, Any] = Body(...), db: Session = Depends(get_db)
):
    """Seuls les champs fournis sont modifiés ; updated_at est attribué par le serveur."""
    try:
        row = remote_table_service.update_row(db, table, row_id, changes)
    except ValueError as e:
        return _error_response(e)
    return to_out(table, row)


@router.delete("/{table}/{row_id}", status_code=204, summary="Supprimer une ligne")
def delete_row(table: str, row_id: str, db: Session = Depends(get_db)):
    """Idempotent : supprimer une ligne déjà absente n'est pas une erreur."""
    try:
        remote_table_service.delete_row(db, table, row_id)
    except ValueError as e:
        return _error_response(e)
    return Response(status_code=204)
