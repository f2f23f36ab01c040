# server/app/routes.py

from    enum               import Enum
from    typing             import List, Optional
from    sqlmodel           import SQLModel
from    fastapi            import APIRouter, Depends, HTTPException, Request, status
from    config             import constants
from    utils.logger       import getLogger
from    database.models    import DeviceRead, DeviceWithStatus, HistoryRead, PairRequest, ShareRequest, UserCreate, UserRead, utcnow
from    .errors            import AlreadyLinked, Forbidden, InvalidCode, NotFound, PairingError, StorageUnavailable
from    .mqtt_client       import MQTTClient
from    .ownership         import OwnershipStore

logger          = getLogger("Routes")
router          = APIRouter()

ERROR_STATUS = {
    InvalidCode:        status.HTTP_400_BAD_REQUEST,
    AlreadyLinked:      status.HTTP_409_CONFLICT,
    Forbidden:          status.HTTP_403_FORBIDDEN,
    NotFound:           status.HTTP_404_NOT_FOUND,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class DeviceCommand(str, Enum):
    relay = constants.COMMAND_RELAY
    get_status = constants.COMMAND_GET_STATUS
    restart = constants.COMMAND_RESTART


class ControlRequest(SQLModel):
    user_id: int
    command: DeviceCommand
    state: Optional[bool] = None


def get_store(request: Request) -> OwnershipStore:
    return request.app.state.store


def get_mqtt(request: Request) -> MQTTClient:
    return request.app.state.mqtt


def to_http_error(error: PairingError) -> HTTPException:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail={"error": error.code, "message": error.message})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

# API Endpoints

# Create User
@router.post(constants.USERS_API_ENDPOINT, response_model=UserRead)
def create_user(payload: UserCreate, store: OwnershipStore = Depends(get_store)):
    try:
        return store.ensure_user(payload.telegram_id, payload.username)
    except PairingError as e:
        raise to_http_error(e)

# List Devices of a User
@router.get(constants.DEVICES_API_ENDPOINT + "/{user_id}", response_model=List[DeviceWithStatus])
def list_devices(user_id: int, store: OwnershipStore = Depends(get_store)):
    try:
        return store.get_devices_for(user_id)
    except PairingError as e:
        raise to_http_error(e)

# Pair Device
@router.post(constants.DEVICES_API_ENDPOINT, response_model=DeviceRead)
def pair_device(payload: PairRequest, store: OwnershipStore = Depends(get_store)):
    logger.info(f"pair device -> user: {payload.user_id}, device: {payload.device_id}")
    try:
        return store.pair(payload.user_id, payload.device_id, payload.confirmation_code, payload.name)
    except PairingError as e:
        raise to_http_error(e)

# Share Device
@router.post(constants.DEVICES_API_ENDPOINT + "/{device_id}/share")
def share_device(device_id: str, payload: ShareRequest, store: OwnershipStore = Depends(get_store)):
    try:
        store.share(payload.owner_id, device_id, payload.target_id)
    except PairingError as e:
        raise to_http_error(e)
    return {"device_id": device_id, "shared_with": payload.target_id}

# Unpair Device
@router.delete(constants.DEVICES_API_ENDPOINT + "/{device_id}")
def unpair_device(device_id: str, user_id: int, store: OwnershipStore = Depends(get_store)):
    try:
        store.unpair(user_id, device_id)
    except PairingError as e:
        raise to_http_error(e)
    return {"device_id": device_id, "status": "unpaired"}

# Control Device
@router.post(constants.DEVICES_API_ENDPOINT + "/{device_id}/control")
def control_device(
    device_id: str,
    payload: ControlRequest,
    store: OwnershipStore = Depends(get_store),
    mqtt: MQTTClient = Depends(get_mqtt),
):
    try:
        linked = store.is_linked(payload.user_id, device_id)
    except PairingError as e:
        raise to_http_error(e)
    if not linked:
        raise to_http_error(NotFound("User is not linked to this device"))
    if payload.command == DeviceCommand.relay and payload.state is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="relay command requires a state")

    sent = mqtt.send_command(device_id, payload.command.value, payload.state)
    if not sent:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Command could not be published")
    return {"device_id": device_id, "command": payload.command.value, "sent": True}

# Device History
@router.get(constants.DEVICES_API_ENDPOINT + "/{device_id}/history", response_model=List[HistoryRead])
def device_history(device_id: str, period: str = constants.DEFAULT_HISTORY_PERIOD, store: OwnershipStore = Depends(get_store)):
    try:
        return store.history_for(device_id, period)
    except PairingError as e:
        raise to_http_error(e)

# Health Check
@router.get(constants.HEALTH_API_ENDPOINT)
def health(mqtt: MQTTClient = Depends(get_mqtt)):
    return {
        "status": "ok",
        "mqtt": mqtt.connected,
        "timestamp": utcnow().isoformat(),
    }
