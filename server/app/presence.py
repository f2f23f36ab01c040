# server/app/presence.py

import  threading
from    typing      import Dict, List, Optional
from    datetime    import datetime, timedelta

from    config          import constants
from    database.models import PresenceRecord
from    utils.logger    import getLogger

logger = getLogger("Presence")


class PresenceTracker:
    """
    In-memory last-seen/online map keyed by device id.

    Records are never mutated in place: every update swaps in a new
    PresenceRecord under the lock, so a reader holding a record always sees
    a consistent snapshot.
    """

    def __init__(self, timeout: float = constants.PRESENCE_TIMEOUT):
        self.timeout = timedelta(seconds=timeout)
        self._records: Dict[str, PresenceRecord] = {}
        self._lock = threading.Lock()

    def record_status(self, device_id: str, fields: dict, now: datetime) -> PresenceRecord:
        record = PresenceRecord(online=True, last_seen=now, **fields)
        with self._lock:
            self._records[device_id] = record
        return record

    def record_online(self, device_id: str, online: bool, now: datetime) -> PresenceRecord:
        with self._lock:
            current = self._records.get(device_id) or PresenceRecord()
            record = current.model_copy(update={"online": online, "last_seen": now})
            self._records[device_id] = record
        if not online:
            logger.info(f"Device {device_id} reported offline")
        return record

    def sweep(self, now: datetime, timeout: Optional[timedelta] = None) -> List[str]:
        """Marks stale devices offline and returns the ids that flipped."""
        limit = timeout if timeout is not None else self.timeout
        flipped = []
        with self._lock:
            for device_id, record in self._records.items():
                if record.online and record.last_seen is not None and now - record.last_seen > limit:
                    self._records[device_id] = record.model_copy(update={"online": False})
                    flipped.append(device_id)
        for device_id in flipped:
            logger.info(f"Device {device_id} timed out, marked offline")
        return flipped

    def get(self, device_id: str) -> PresenceRecord:
        with self._lock:
            record = self._records.get(device_id)
        return record if record is not None else PresenceRecord(online=False)

    def known_devices(self) -> List[str]:
        with self._lock:
            return list(self._records)
