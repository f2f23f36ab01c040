# server/database/models.py

from    typing      import Optional
from    datetime    import datetime, timezone
from    sqlalchemy  import BigInteger, DateTime, UniqueConstraint
from    sqlmodel    import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id:                             Optional[int] = Field(default=None, primary_key=True)
    telegram_id:                    int = Field(sa_type=BigInteger, unique=True, index=True, nullable=False)
    username:                       Optional[str] = None
    created_at: datetime =          Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Device(SQLModel, table=True):
    __tablename__ = "devices"

    id:                             Optional[int] = Field(default=None, primary_key=True)
    device_id:                      str = Field(unique=True, index=True, nullable=False)
    name:                           str = Field(nullable=False)
    created_at: datetime =          Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class UserDevice(SQLModel, table=True):
    __tablename__ = "user_devices"
    __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_user_device"),)

    id:                             Optional[int] = Field(default=None, primary_key=True)
    user_id:                        int = Field(foreign_key="users.id", index=True)
    device_id:                      str = Field(foreign_key="devices.device_id", index=True)
    is_owner:                       bool = Field(default=False)
    added_at: datetime =            Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class DeviceHistory(SQLModel, table=True):
    __tablename__ = "device_history"

    id:                             Optional[int] = Field(default=None, primary_key=True)
    device_id:                      str = Field(foreign_key="devices.device_id", index=True)
    relay_state:                    Optional[bool] = None
    wifi_rssi:                      Optional[int] = None
    uptime:                         Optional[int] = None
    free_heap:                      Optional[int] = None
    timestamp: datetime =           Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)

# Pydantic Schemas (used in routes)
class PresenceRecord(SQLModel):
    online:                         bool = False
    last_seen:                      Optional[datetime] = None
    relay_state:                    Optional[bool] = None
    wifi_rssi:                      Optional[int] = None
    uptime:                         Optional[int] = None
    free_heap:                      Optional[int] = None


class UserCreate(SQLModel):
    telegram_id: int
    username: Optional[str] = None


class UserRead(SQLModel):
    id: int
    telegram_id: int
    username: Optional[str]
    created_at: datetime


class DeviceRead(SQLModel):
    device_id: str
    name: str
    created_at: datetime
    is_owner: bool
    added_at: datetime


class DeviceWithStatus(DeviceRead):
    status: PresenceRecord


class HistoryRead(SQLModel):
    device_id: str
    relay_state: Optional[bool]
    wifi_rssi: Optional[int]
    uptime: Optional[int]
    free_heap: Optional[int]
    timestamp: datetime


class PairRequest(SQLModel):
    user_id: int
    device_id: str
    confirmation_code: str
    name: Optional[str] = None


class ShareRequest(SQLModel):
    owner_id: int
    target_id: int

