"""
Exceptions du moteur de synchronisation.

Les erreurs d'écriture locale (SQLAlchemyError) ne sont jamais encapsulées :
elles remontent telles quelles à l'action qui les a déclenchées.
"""

from typing import Optional

# Code PostgreSQL « unique_violation », repris tel quel par le store distant
UNIQUE_VIOLATION = "23505"


class SyncError(Exception):
    """Base des erreurs propres à la synchronisation."""


class RemoteStoreError(SyncError):
    """Échec d'un appel au store distant (réseau, timeout, erreur serveur, contrainte)."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION


class DependencyNotSyncedError(SyncError):
    """Une entité référencée n'a pas encore d'identifiant distant (création pas encore poussée)."""

    def __init__(self, table: str, local_id: Optional[int]):
        super().__init__(f"{table} localId={local_id} pas encore synchronisé")
        self.table = table
        self.local_id = local_id


class PendingSyncError(SyncError):
    """Déconnexion refusée : des modifications locales n'ont pas pu être synchronisées."""

    def __init__(self, pending_count: int):
        super().__init__(
            f"Déconnexion impossible : {pending_count} élément(s) en attente de synchronisation. "
            "Vérifiez la connexion et lancez une synchronisation manuelle."
        )
        self.pending_count = pending_count
