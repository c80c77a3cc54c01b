"""
Contrat du store distant consommé par le moteur de synchronisation.

Trois tables autoritaires côté serveur (members, events, attendance) :
insert avec retour de la ligne, update / delete par remote_id, et sélection
des lignes modifiées après un horodatage. Toute erreur est une RemoteStoreError ;
une violation d'unicité porte le code UNIQUE_VIOLATION.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional


class RemoteStore(ABC):

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insère une ligne et retourne la ligne stockée (avec son « id » distant)."""

    @abstractmethod
    def update(self, table: str, remote_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Mise à jour partielle par remote_id."""

    @abstractmethod
    def delete(self, table: str, remote_id: str) -> None:
        """Suppression par remote_id (idempotente)."""

    @abstractmethod
    def select_updated_since(
        self, table: str, since: datetime, inclusive: bool = False
    ) -> List[Dict[str, Any]]:
        """Lignes dont updated_at > since (>= si inclusive)."""

    @abstractmethod
    def find_attendance(self, member_id: str, event_id: str) -> Optional[Dict[str, Any]]:
        """Présence distante existante pour (membre, événement), ou None."""
