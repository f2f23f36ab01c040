# firmware/provisioning.py

import  os
import  json
import  queue
from    dataclasses     import dataclass
from    typing          import Optional

from    utils.logger    import getLogger

logger = getLogger("Provisioning")


@dataclass(frozen=True)
class WifiCredentials:
    ssid: str
    password: str


class CredentialStore:
    """Network credentials kept in a small JSON file, the simulator's stand-in for flash preferences."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[WifiCredentials]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None
        if not data.get("ssid"):
            return None
        return WifiCredentials(ssid=data["ssid"], password=data.get("password", ""))

    def save(self, credentials: WifiCredentials) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"ssid": credentials.ssid, "password": credentials.password}, f)
        os.replace(tmp_path, self.path)
        logger.info(f"Saved credentials for network '{credentials.ssid}'")

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class SetupPortal:
    """
    Hand-off point between the local setup interface and the agent loop.

    The web form (or any other front end) calls submit() from its own thread;
    the agent drains it with poll() once per loop iteration.
    """

    def __init__(self):
        self._pending: "queue.Queue[WifiCredentials]" = queue.Queue()

    def submit(self, ssid: str, password: str) -> None:
        if not ssid:
            raise ValueError("ssid must not be empty")
        self._pending.put(WifiCredentials(ssid=ssid, password=password))

    def poll(self) -> Optional[WifiCredentials]:
        try:
            return self._pending.get_nowait()
        except queue.Empty:
            return None


class SimulatedNetwork:
    """Station + access point radio. `reachable` controls whether association succeeds."""

    def __init__(self, reachable: bool = True, rssi: int = -60):
        self.reachable          = reachable
        self.signal             = rssi
        self.access_point       = None
        self._connected         = False

    def start_access_point(self, ssid: str) -> None:
        self.access_point = ssid
        logger.info(f"Access point '{ssid}' is up")

    def connect(self, credentials: WifiCredentials) -> bool:
        self._connected = self.reachable
        return self._connected

    def is_connected(self) -> bool:
        return self._connected and self.reachable

    def rssi(self) -> int:
        return self.signal if self.is_connected() else 0
