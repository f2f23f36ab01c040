# config/credentials.py

import  os
from    dotenv import load_dotenv

load_dotenv("variables.env")                                            # load variables from .env file

MQTT_BROKER                 = os.getenv("MQTT_HOST", "localhost")
MQTT_PORT                   = int(os.getenv("MQTT_PORT", "1883"))
MQTT_USERNAME               = os.getenv("MQTT_USER")
MQTT_PASSWORD               = os.getenv("MQTT_PASSWORD")
MQTT_USE_TLS                = os.getenv("MQTT_USE_TLS", "false").lower() in ("1", "true", "yes")

ROOT_CA                     = os.getenv("MQTT_ROOT_CA", os.path.join("certs", "ca.crt"))
CLIENT_CERT                 = os.getenv("MQTT_CLIENT_CERT", os.path.join("certs", "client.crt"))
PRIVATE_KEY                 = os.getenv("MQTT_PRIVATE_KEY", os.path.join("certs", "client.key"))

DATABASE_URL                = os.getenv("DATABASE_URL")                 # defaults to database/devices.db
DB_TIMEOUT_SECONDS          = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))

LOG_LEVEL                   = os.getenv("LOG_LEVEL", "INFO")
