# server/app/mqtt_client.py

import  os
from    typing              import Optional
from    paho.mqtt           import client as mqtt_client
from    config              import constants, credentials
from    utils.logger        import getLogger
from    .codec              import encode_command
from    .dispatcher         import MessageDispatcher

logger      = getLogger("MQTTClient")

base_dir    = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
ca_cert     = os.path.join(base_dir, credentials.ROOT_CA)
client_cert = os.path.join(base_dir, credentials.CLIENT_CERT)
client_key  = os.path.join(base_dir, credentials.PRIVATE_KEY)

class MQTTClient:
    def __init__(self, dispatcher: MessageDispatcher, client=None):
        self.dispatcher = dispatcher
        self.client = client or mqtt_client.Client(
            callback_api_version=mqtt_client.CallbackAPIVersion.VERSION2,
            client_id=f"solar-backend-{os.getpid()}",
        )

        if credentials.MQTT_USE_TLS:
            self.client.tls_set(
                ca_certs    = ca_cert,
                certfile    = client_cert,
                keyfile     = client_key
            )
        if credentials.MQTT_USERNAME:
            self.client.username_pw_set(credentials.MQTT_USERNAME, credentials.MQTT_PASSWORD)

        self.client.on_connect      = self.on_connect
        self.client.on_disconnect   = self.on_disconnect
        self.client.on_message      = self.on_message

    @property
    def connected(self) -> bool:
        return self.client.is_connected()

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"Failed to connect, reason code {reason_code}")
            return
        logger.info("Connected to MQTT Broker!")
        self.client.subscribe(constants.SERVER_STATUS_TOPIC)                                                    # Telemetry from devices
        logger.info(f"Subscribed to status topic: {constants.SERVER_STATUS_TOPIC}")
        self.client.subscribe(constants.SERVER_ONLINE_TOPIC)                                                    # Retained online flags / LWT
        logger.info(f"Subscribed to online topic: {constants.SERVER_ONLINE_TOPIC}")

    def on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning(f"Unexpected disconnection from broker: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")

    def on_message(self, client, userdata, msg):
        # Called on the paho network thread, one message at a time; dispatch blocks
        # on DB writes and must not run on the event loop.
        logger.debug(f"Received message on topic {msg.topic}: {msg.payload!r}")
        self.dispatcher.dispatch(msg.topic, msg.payload)

    def start(self):
        logger.info(f"Connecting to MQTT broker at {credentials.MQTT_BROKER}:{credentials.MQTT_PORT}")
        self.client.connect_async(credentials.MQTT_BROKER, credentials.MQTT_PORT, constants.MQTT_KEEPALIVE)
        # Run the MQTT network loop in the background; paho reconnects on its own.
        self.client.loop_start()
        logger.info("MQTT client started successfully")

    def stop(self):
        self.client.disconnect()
        self.client.loop_stop()
        logger.info("MQTT client stopped")

    def send_command(self, device_id: str, command: str, state: Optional[bool] = None) -> bool:
        """
        Send a command to a device by publishing on its command topic.
        """
        topic, payload = encode_command(device_id, command, state)
        result = self.client.publish(topic, payload)
        status = result[0]
        if status == 0:
            logger.info(f"Sent command to device {device_id} on topic {topic}: {payload}")
            return True
        logger.error(f"Failed to send command to topic {topic}")
        return False
