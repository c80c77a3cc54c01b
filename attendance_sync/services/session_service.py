"""
Garde-fou de déconnexion / changement de compte.

Des mutations locales encore en file seraient perdues avec la session :
un dernier sync (forcé) est tenté, et la déconnexion est refusée s'il reste
quoi que ce soit en attente. Un échec du pull seul ne bloque pas : aucune
mutation locale n'est perdue.
"""

import logging

from attendance_sync.exceptions import PendingSyncError
from attendance_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


def ensure_can_sign_out(engine: SyncEngine) -> None:
    """Lève PendingSyncError si la file n'a pas pu être vidée."""
    pending = engine.queue.pending_count()
    if pending == 0:
        return

    logger.info("Déconnexion demandée avec %d élément(s) en attente : sync final", pending)
    result = engine.sync(force=True)
    remaining = engine.queue.pending_count()
    if remaining:
        logger.warning("Déconnexion refusée : %d élément(s) non synchronisé(s)", remaining)
        raise PendingSyncError(remaining)
    if not result.success:
        logger.info("File vidée malgré des erreurs de sync : %s", "; ".join(result.errors))
