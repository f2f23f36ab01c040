# Bus Configuration
SERVER_VERSION                      = "1.0.0"
MQTT_KEEPALIVE                      = 60
TOPIC_NAMESPACE                     = "solar"
SERVER_STATUS_TOPIC                 = "solar/+/status"
SERVER_ONLINE_TOPIC                 = "solar/+/online"
DEVICE_STATUS_KIND                  = "status"
DEVICE_ONLINE_KIND                  = "online"
DEVICE_COMMAND_KIND                 = "command"

# Presence Policy (seconds)
PRESENCE_TIMEOUT                    = 30
PRESENCE_SWEEP_INTERVAL             = 5
DEVICE_TELEMETRY_INTERVAL           = 10

# History Retention
HISTORY_RETENTION_DAYS              = 30
HISTORY_PRUNE_INTERVAL              = 24 * 60 * 60
HISTORY_QUERY_LIMIT                 = 100
HISTORY_PERIODS                     = {
    "1h":   1,
    "24h":  24,
    "7d":   7 * 24,
    "30d":  30 * 24,
}
DEFAULT_HISTORY_PERIOD              = "24h"

# Device Commands
COMMAND_RELAY                       = "relay"
COMMAND_GET_STATUS                  = "getStatus"
COMMAND_RESTART                     = "restart"
DEFAULT_DEVICE_NAME_PREFIX          = "Solar Controller"

# API Endpoints (WebApp)

USERS_API_ENDPOINT                  = "/api/users"
DEVICES_API_ENDPOINT                = "/api/devices"
HEALTH_API_ENDPOINT                 = "/health"
