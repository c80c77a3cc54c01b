# Importe tous les modèles locaux pour enregistrer leurs tables dans Base.metadata
# avant create_all (init_local_db). Les modèles du store distant vivent dans
# attendance_sync.models.server, sur une base déclarative séparée.

from attendance_sync.models.member import Member  # noqa: F401
from attendance_sync.models.event import Event  # noqa: F401
from attendance_sync.models.attendance import Attendance  # noqa: F401
from attendance_sync.models.sync_queue import SyncQueueItem  # noqa: F401
from attendance_sync.models.setting import Setting  # noqa: F401
