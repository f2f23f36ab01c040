# server/app/confirmation.py

import  threading
from    typing      import Dict, Optional

from    utils.logger import getLogger

logger = getLogger("Confirmation")


class ConfirmationRegistry:
    """Most recently advertised pairing code per device. Refreshed by every status message."""

    def __init__(self):
        self._codes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def advertise(self, device_id: str, code: str) -> None:
        with self._lock:
            previous = self._codes.get(device_id)
            self._codes[device_id] = code
        if previous != code:
            logger.debug(f"Device {device_id} advertised a new confirmation code")

    def lookup(self, device_id: str) -> Optional[str]:
        with self._lock:
            return self._codes.get(device_id)

    def matches(self, device_id: str, candidate: str) -> bool:
        code = self.lookup(device_id)
        return code is not None and candidate is not None and code == str(candidate)
