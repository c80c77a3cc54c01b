"""
Moniteur de connectivité réelle (détection « lie-fi »).

L'état du lien réseau (online/offline annoncé par la plateforme) ne suffit pas :
une requête HEAD légère est envoyée sur l'endpoint heartbeat du serveur avec un
timeout strict. Réponse en erreur, timeout ou aller-retour trop lent → DEGRADED.

Le moteur traite DEGRADED comme OFFLINE pour la synchronisation automatique ;
un sync manuel forcé reste possible.
"""

import enum
import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

import httpx

from attendance_sync.common.datetime_utils import utcnow
from attendance_sync.config import settings

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, enum.Enum):
    UNKNOWN = "unknown"     # Aucune sonde encore effectuée
    ONLINE = "online"
    DEGRADED = "degraded"   # Lien actif mais serveur injoignable ou trop lent
    OFFLINE = "offline"     # Lien réseau coupé


StatusListener = Callable[[ConnectivityStatus, ConnectivityStatus], None]


class ConnectivityMonitor:
    def __init__(
        self,
        probe_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = settings.PROBE_TIMEOUT_SECONDS,
        degraded_threshold: float = settings.DEGRADED_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        link_up: bool = True,
    ):
        self.probe_url = probe_url or settings.REMOTE_API_URL.rstrip("/") + settings.HEARTBEAT_PATH
        self.timeout = timeout
        self.degraded_threshold = degraded_threshold
        self._client = client or httpx.Client(timeout=timeout)
        self._clock = clock
        self._link_up = link_up
        self._status = ConnectivityStatus.UNKNOWN
        self._lock = threading.Lock()
        self._listeners: List[StatusListener] = []
        self.last_latency: Optional[float] = None
        self.last_checked_at: Optional[datetime] = None

    @property
    def status(self) -> ConnectivityStatus:
        return self._status

    @property
    def link_up(self) -> bool:
        return self._link_up

    def add_listener(self, listener: StatusListener) -> None:
        """listener(ancien, nouveau) est appelé à chaque changement d'état."""
        self._listeners.append(listener)

    def probe(self) -> ConnectivityStatus:
        """Mesure instantanée, sans modifier l'état publié."""
        if not self._link_up:
            return ConnectivityStatus.OFFLINE

        start = self._clock()
        try:
            response = self._client.head(
                self.probe_url, timeout=self.timeout, headers={"Cache-Control": "no-store"}
            )
        except httpx.HTTPError as exc:
            logger.debug("Sonde heartbeat en échec : %s", exc)
            self.last_latency = None
            return ConnectivityStatus.DEGRADED

        self.last_latency = self._clock() - start
        if self.last_latency > self.degraded_threshold or not response.is_success:
            logger.debug(
                "Connexion dégradée : HTTP %d en %.2fs", response.status_code, self.last_latency
            )
            return ConnectivityStatus.DEGRADED
        return ConnectivityStatus.ONLINE

    def check(self) -> ConnectivityStatus:
        """Sonde puis publie le nouvel état (appelé périodiquement par le scheduler)."""
        status = self.probe()
        self.last_checked_at = utcnow()
        self._publish(status)
        return status

    def set_link_state(self, up: bool) -> ConnectivityStatus:
        """Transition online/offline signalée par la plateforme → nouvelle vérification."""
        self._link_up = up
        if not up:
            self._publish(ConnectivityStatus.OFFLINE)
            return ConnectivityStatus.OFFLINE
        return self.check()

    def should_sync(self) -> bool:
        """Synchronisation automatique autorisée uniquement si ONLINE."""
        if self._status == ConnectivityStatus.UNKNOWN:
            self.check()
        return self._status == ConnectivityStatus.ONLINE

    def close(self) -> None:
        self._client.close()

    def _publish(self, status: ConnectivityStatus) -> None:
        with self._lock:
            previous, self._status = self._status, status
        if previous == status:
            return
        logger.info("Connectivité : %s → %s", previous.value, status.value)
        for listener in list(self._listeners):
            listener(previous, status)
