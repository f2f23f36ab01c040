#!/usr/bin/env python3
"""
Solar Controller Device Agent
Simulates the ESP32 relay controller: WiFi provisioning, MQTT session with
reconnect cooldown, periodic telemetry with the pairing code, and relay commands.
"""

import  os
import  sys
import  json
import  time
import  uuid
import  random
from    enum            import Enum
from    typing          import Callable, Optional

import  paho.mqtt.client as mqtt

from    utils.logger    import getLogger
from    .provisioning   import CredentialStore, SetupPortal, SimulatedNetwork, WifiCredentials

logger = getLogger("SolarAgent")

# Configuration
MQTT_BROKER             = os.getenv("MQTT_HOST", "localhost")
MQTT_PORT               = int(os.getenv("MQTT_PORT", "1883"))
MQTT_USERNAME           = os.getenv("MQTT_USER")
MQTT_PASSWORD           = os.getenv("MQTT_PASSWORD")
MQTT_KEEPALIVE          = 60
CREDENTIALS_PATH        = os.getenv("AGENT_CREDENTIALS_PATH", "agent_wifi.json")

TOPIC_NAMESPACE         = "solar"
AP_SSID_PREFIX          = "SolarController-"

# Timing (seconds)
TELEMETRY_INTERVAL      = 10
LED_INTERVAL            = 1
RECONNECT_COOLDOWN      = 5
WIFI_CONNECT_ATTEMPTS   = 20
WIFI_CONNECT_DELAY      = 0.5
LOOP_IDLE               = 0.01

SIMULATED_FREE_HEAP     = 180_000


class AgentState(str, Enum):
    PROVISIONING    = "provisioning"
    CONNECTING      = "connecting"
    ONLINE          = "online"
    RECONNECTING    = "reconnecting"


def hardware_device_id() -> str:
    return f"{uuid.getnode():012X}"


def generate_confirmation_code() -> str:
    return f"{random.SystemRandom().randrange(1_000_000):06d}"


class Periodic:
    """Due-time check for one periodic action in the cooperative loop."""

    def __init__(self, interval: float):
        self.interval = interval
        self.last_run: Optional[float] = None

    def due(self, now: float) -> bool:
        if self.last_run is None or now - self.last_run >= self.interval:
            self.last_run = now
            return True
        return False

    def reset(self):
        self.last_run = None


def restart_process():
    logger.warning("Restarting agent process")
    os.execv(sys.executable, [sys.executable] + sys.argv)


class SolarAgent:
    def __init__(
        self,
        credentials: CredentialStore,
        network=None,
        portal: Optional[SetupPortal] = None,
        client=None,
        device_id: Optional[str] = None,
        confirmation_code: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        reboot: Callable[[], None] = restart_process,
        free_heap: Callable[[], int] = lambda: SIMULATED_FREE_HEAP,
    ):
        self.device_id          = device_id or hardware_device_id()
        self.confirmation_code  = confirmation_code or generate_confirmation_code()
        self.credentials        = credentials
        self.network            = network or SimulatedNetwork()
        self.portal             = portal or SetupPortal()
        self.clock              = clock
        self.sleep              = sleep
        self.reboot             = reboot
        self.free_heap          = free_heap

        self.state              = AgentState.PROVISIONING
        self.relay_state        = False
        self.led_on             = False
        self.session_ready      = False
        self.session_lost       = False
        self.last_reconnect     = None
        self.boot_time          = clock()

        self.wifi_attempts      = 0

        self.telemetry          = Periodic(TELEMETRY_INTERVAL)
        self.led                = Periodic(LED_INTERVAL)
        self.wifi_retry         = Periodic(WIFI_CONNECT_DELAY)

        self.status_topic       = f"{TOPIC_NAMESPACE}/{self.device_id}/status"
        self.online_topic       = f"{TOPIC_NAMESPACE}/{self.device_id}/online"
        self.command_topic      = f"{TOPIC_NAMESPACE}/{self.device_id}/command"

        self.client = client or mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.device_id,
        )
        self.setup_mqtt()

    def setup_mqtt(self):
        """Callbacks and Last Will: the broker publishes online=false for us if the session drops."""
        if MQTT_USERNAME:
            self.client.username_pw_set(MQTT_USERNAME, MQTT_PASSWORD)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect
        self.client.will_set(self.online_topic, "false", qos=1, retain=True)

    # Lifecycle

    def boot(self):
        logger.info(f"Booting device {self.device_id}, confirmation code {self.confirmation_code}")
        # The access point stays up in every state so setup is always reachable.
        self.network.start_access_point(AP_SSID_PREFIX + self.device_id[-4:])
        if self.credentials.load() is not None:
            self.start_connecting()
        else:
            logger.info("No stored network credentials, waiting for setup")
            self.state = AgentState.PROVISIONING

    def provision(self, credentials: WifiCredentials):
        self.credentials.save(credentials)
        self.start_connecting()

    def start_connecting(self):
        self.state = AgentState.CONNECTING
        self.wifi_attempts = 0
        self.wifi_retry.reset()

    def connect_network(self, now: float) -> Optional[bool]:
        """Makes at most one join attempt per call.

        Returns True once joined, False when the attempt budget is spent or
        there are no credentials, and None while still trying.
        """
        if not self.wifi_retry.due(now):
            return None
        credentials = self.credentials.load()
        if credentials is None:
            return False
        self.wifi_attempts += 1
        if self.network.connect(credentials):
            logger.info(f"Joined network '{credentials.ssid}' (attempt {self.wifi_attempts})")
            return True
        if self.wifi_attempts >= WIFI_CONNECT_ATTEMPTS:
            logger.warning(f"Could not join '{credentials.ssid}' after {WIFI_CONNECT_ATTEMPTS} attempts")
            return False
        return None

    def open_session(self, now: float) -> bool:
        self.last_reconnect = now
        try:
            self.client.connect(MQTT_BROKER, MQTT_PORT, MQTT_KEEPALIVE)
        except OSError as e:
            logger.warning(f"MQTT connection to {MQTT_BROKER}:{MQTT_PORT} failed: {e}")
            return False
        self.session_lost = False
        return True

    def loop_once(self, now: Optional[float] = None):
        """One cooperative iteration; every branch returns promptly."""
        now = self.clock() if now is None else now

        credentials = self.portal.poll()
        if credentials is not None:
            logger.info(f"Received credentials for '{credentials.ssid}' from setup portal")
            self.provision(credentials)

        if self.state == AgentState.CONNECTING:
            joined = self.connect_network(now)
            if joined is None:
                return
            if not joined:
                self.state = AgentState.PROVISIONING
            elif self.open_session(now):
                self.state = AgentState.ONLINE
            else:
                self.state = AgentState.RECONNECTING

        elif self.state == AgentState.ONLINE:
            rc = self.client.loop(timeout=0)
            if rc != mqtt.MQTT_ERR_SUCCESS or self.session_lost or not self.network.is_connected():
                logger.warning("MQTT session lost, will retry")
                self.session_ready = False
                self.state = AgentState.RECONNECTING
                self.last_reconnect = now
                return
            if self.session_ready and self.telemetry.due(now):
                self.publish_status()
            if self.led.due(now):
                self.led_on = not self.led_on

        elif self.state == AgentState.RECONNECTING:
            if self.last_reconnect is not None and now - self.last_reconnect < RECONNECT_COOLDOWN:
                return
            if not self.network.is_connected():
                self.start_connecting()
            elif self.open_session(now):
                self.state = AgentState.ONLINE

    # MQTT callbacks

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"Broker refused connection: {reason_code}")
            self.session_lost = True
            return
        logger.info("Connected to MQTT broker")
        self.session_ready = True
        client.publish(self.online_topic, "true", qos=1, retain=True)
        client.subscribe(self.command_topic)
        self.telemetry.reset()                                  # publish right away

    def on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self.session_ready = False
        self.session_lost = True
        logger.warning(f"Disconnected from MQTT broker (Code: {reason_code})")

    def on_message(self, client, userdata, msg):
        self.handle_command(msg.payload)

    # Commands

    def handle_command(self, payload):
        try:
            data = json.loads(payload)
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed command payload: {e}")
            return
        if not isinstance(data, dict):
            logger.error(f"Command payload is not an object: {payload!r}")
            return

        command = data.get("command")
        if command == "relay":
            state = data.get("state")
            if not isinstance(state, bool):
                logger.error(f"Invalid relay state: {state!r}")
                return
            self.set_relay(state)
            self.publish_status()
        elif command == "getStatus":
            self.publish_status()
        elif command == "restart":
            logger.warning("Restart requested")
            self.reboot()
        else:
            logger.warning(f"Unknown command: {command!r}")

    def set_relay(self, state: bool):
        logger.info(f"Relay {'ON' if state else 'OFF'}")
        self.relay_state = state

    def status_payload(self) -> dict:
        return {
            "relayState":       self.relay_state,
            "wifiRSSI":         self.network.rssi(),
            "uptime":           int(self.clock() - self.boot_time),
            "freeHeap":         self.free_heap(),
            "confirmationCode": self.confirmation_code,
        }

    def publish_status(self):
        self.client.publish(self.status_topic, json.dumps(self.status_payload()))

    def run(self):
        """Main run loop"""
        self.boot()
        try:
            while True:
                self.loop_once()
                self.sleep(LOOP_IDLE)
        except KeyboardInterrupt:
            logger.info("Shutting down...")
            if self.session_ready:
                self.client.publish(self.online_topic, "false", qos=1, retain=True)
            self.client.disconnect()


def main():
    agent = SolarAgent(CredentialStore(CREDENTIALS_PATH))
    ssid = os.getenv("AGENT_WIFI_SSID")
    if ssid:
        agent.portal.submit(ssid, os.getenv("AGENT_WIFI_PASSWORD", ""))
    agent.run()


if __name__ == "__main__":
    main()
