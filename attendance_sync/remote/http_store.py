"""
Client HTTP (httpx) du store distant de référence (attendance_sync.main).

Toute erreur réseau ou HTTP est convertie en RemoteStoreError ; le code
d'erreur renvoyé par le serveur (ex. 23505) est conservé pour que le moteur
puisse distinguer une présence en doublon d'un vrai échec.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from attendance_sync.config import settings
from attendance_sync.exceptions import RemoteStoreError
from attendance_sync.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class HttpRemoteStore(RemoteStore):
    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = settings.REMOTE_TIMEOUT_SECONDS,
    ):
        self._client = client or httpx.Client(base_url=base_url or settings.REMOTE_API_URL, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"Erreur réseau {method} {path} : {exc}") from exc

        if response.is_error:
            code = None
            try:
                body = response.json()
                detail = body.get("detail", body) if isinstance(body, dict) else body
                code = body.get("code") if isinstance(body, dict) else None
            except ValueError:
                detail = response.text
            raise RemoteStoreError(
                f"{method} {path} → {response.status_code} : {detail}",
                code=code,
                status_code=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response, method: str, path: str) -> Any:
        """Corps JSON d'une réponse 2xx ; un corps illisible (portail captif…) devient RemoteStoreError."""
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteStoreError(
                f"{method} {path} → {response.status_code} : réponse non JSON",
                status_code=response.status_code,
            ) from exc

    def _row(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        body = self._json(self._request(method, path, **kwargs), method, path)
        if not isinstance(body, dict) or "id" not in body:
            raise RemoteStoreError(f"{method} {path} : ligne sans identifiant dans la réponse")
        return body

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        return self._row("POST", f"/api/{table}", json=row)

    def update(self, table: str, remote_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._row("PATCH", f"/api/{table}/{remote_id}", json=changes)

    def delete(self, table: str, remote_id: str) -> None:
        self._request("DELETE", f"/api/{table}/{remote_id}")

    def select_updated_since(
        self, table: str, since: datetime, inclusive: bool = False
    ) -> List[Dict[str, Any]]:
        path = f"/api/{table}"
        params = {"updated_after": since.isoformat(), "inclusive": str(inclusive).lower()}
        rows = self._json(self._request("GET", path, params=params), "GET", path)
        if not isinstance(rows, list):
            raise RemoteStoreError(f"GET {path} : liste de lignes attendue")
        logger.debug("Pull %s depuis %s : %d ligne(s)", table, since.isoformat(), len(rows))
        return rows

    def find_attendance(self, member_id: str, event_id: str) -> Optional[Dict[str, Any]]:
        path = "/api/attendance/lookup"
        try:
            response = self._request("GET", path, params={"member_id": member_id, "event_id": event_id})
        except RemoteStoreError as exc:
            if exc.status_code == 404:
                return None
            raise
        return self._json(response, "GET", path)
