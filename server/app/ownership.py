# server/app/ownership.py

from    contextlib      import contextmanager
from    datetime        import timedelta
from    typing          import List, Optional
from    sqlalchemy      import delete, func
from    sqlalchemy.exc  import IntegrityError, OperationalError
from    sqlmodel        import Session, select

from    config          import constants
from    database.models import (
    Device, DeviceHistory, DeviceRead, DeviceWithStatus, HistoryRead, User, UserDevice, UserRead, utcnow,
)
from    utils.logger    import getLogger
from    .codec          import StatusMessage
from    .confirmation   import ConfirmationRegistry
from    .errors         import AlreadyLinked, DeviceExists, Forbidden, InvalidCode, NotFound, StorageUnavailable
from    .presence       import PresenceTracker

logger = getLogger("Ownership")


def default_device_name(device_id: str) -> str:
    return f"{constants.DEFAULT_DEVICE_NAME_PREFIX} {device_id[-4:]}"


class OwnershipStore:
    """
    Durable user <-> device relation.

    pair/share/unpair each run in a single transaction. The unique device id
    and the unique (user, device) edge are enforced by the database, so a
    concurrent writer that loses the race gets an IntegrityError, which is
    rolled back and reported as a conflict.
    """

    def __init__(self, engine, registry: ConfirmationRegistry, presence: PresenceTracker):
        self.engine     = engine
        self.registry   = registry
        self.presence   = presence
        self._clock     = utcnow

    @contextmanager
    def _transaction(self, conflict=AlreadyLinked):
        session = Session(self.engine)
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"Transaction rolled back on constraint violation: {e.orig}")
            raise conflict() from e
        except OperationalError as e:
            session.rollback()
            logger.error(f"Storage unavailable: {e.orig}")
            raise StorageUnavailable() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Lookups (inside an open session)

    @staticmethod
    def _get_user(session, telegram_id: int) -> Optional[User]:
        return session.exec(select(User).where(User.telegram_id == telegram_id)).first()

    def _get_or_create_user(self, session, telegram_id: int, username: Optional[str] = None) -> User:
        user = self._get_user(session, telegram_id)
        if user is None:
            user = User(telegram_id=telegram_id, username=username, created_at=self._clock())
            session.add(user)
            session.flush()
            logger.info(f"Created user {telegram_id}")
        return user

    @staticmethod
    def _get_device(session, device_id: str) -> Optional[Device]:
        return session.exec(select(Device).where(Device.device_id == device_id)).first()

    @staticmethod
    def _get_edge(session, user_id: int, device_id: str) -> Optional[UserDevice]:
        return session.exec(
            select(UserDevice)
            .where(UserDevice.user_id == user_id)
            .where(UserDevice.device_id == device_id)
        ).first()

    # Users

    def ensure_user(self, telegram_id: int, username: Optional[str] = None) -> UserRead:
        with self._transaction() as session:
            user = self._get_or_create_user(session, telegram_id, username)
            if username and not user.username:
                user.username = username
                session.add(user)
            return UserRead.model_validate(user, from_attributes=True)

    # Pairing

    def pair(self, telegram_id: int, device_id: str, code: str, name: Optional[str] = None) -> DeviceRead:
        if not self.registry.matches(device_id, code):
            logger.warning(f"Rejected pairing of {device_id} by user {telegram_id}: invalid code")
            raise InvalidCode()

        with self._transaction(conflict=DeviceExists) as session:
            user = self._get_or_create_user(session, telegram_id)
            device = self._get_device(session, device_id)
            is_new_device = device is None

            if is_new_device:
                device = Device(device_id=device_id, name=name or default_device_name(device_id), created_at=self._clock())
                session.add(device)
                session.flush()
            elif self._get_edge(session, user.id, device_id) is not None:
                raise AlreadyLinked()

            edge = UserDevice(user_id=user.id, device_id=device_id, is_owner=is_new_device, added_at=self._clock())
            session.add(edge)
            session.flush()

            result = DeviceRead(
                device_id   = device.device_id,
                name        = device.name,
                created_at  = device.created_at,
                is_owner    = edge.is_owner,
                added_at    = edge.added_at,
            )

        logger.info(f"User {telegram_id} paired device {device_id} (owner={result.is_owner})")
        return result

    def share(self, owner_telegram_id: int, device_id: str, target_telegram_id: int) -> None:
        with self._transaction() as session:
            if self._get_device(session, device_id) is None:
                raise NotFound("Device not found")

            owner = self._get_user(session, owner_telegram_id)
            edge = self._get_edge(session, owner.id, device_id) if owner else None
            if edge is None or not edge.is_owner:
                raise Forbidden()

            target = self._get_or_create_user(session, target_telegram_id)
            if self._get_edge(session, target.id, device_id) is not None:
                raise AlreadyLinked()

            session.add(UserDevice(user_id=target.id, device_id=device_id, is_owner=False, added_at=self._clock()))

        logger.info(f"User {owner_telegram_id} shared device {device_id} with {target_telegram_id}")

    def unpair(self, telegram_id: int, device_id: str) -> None:
        with self._transaction() as session:
            user = self._get_user(session, telegram_id)
            device = self._get_device(session, device_id)
            if user is None or device is None:
                raise NotFound()

            edge = self._get_edge(session, user.id, device_id)
            if edge is None:
                raise NotFound("User is not linked to this device")

            session.delete(edge)
            session.flush()

            remaining = session.exec(
                select(func.count()).select_from(UserDevice).where(UserDevice.device_id == device_id)
            ).one()
            if remaining == 0:
                session.execute(delete(DeviceHistory).where(DeviceHistory.device_id == device_id))
                session.delete(device)
                logger.info(f"Device {device_id} has no users left, deleted")

        logger.info(f"User {telegram_id} unpaired device {device_id}")

    def is_linked(self, telegram_id: int, device_id: str) -> bool:
        with self._transaction() as session:
            user = self._get_user(session, telegram_id)
            return user is not None and self._get_edge(session, user.id, device_id) is not None

    def get_devices_for(self, telegram_id: int) -> List[DeviceWithStatus]:
        with self._transaction() as session:
            user = self._get_user(session, telegram_id)
            if user is None:
                return []

            rows = session.exec(
                select(Device, UserDevice)
                .join(UserDevice, UserDevice.device_id == Device.device_id)
                .where(UserDevice.user_id == user.id)
                .order_by(Device.created_at.desc())
            ).all()

            return [
                DeviceWithStatus(
                    device_id   = device.device_id,
                    name        = device.name,
                    created_at  = device.created_at,
                    is_owner    = edge.is_owner,
                    added_at    = edge.added_at,
                    status      = self.presence.get(device.device_id),
                )
                for device, edge in rows
            ]

    # History

    def record_history(self, device_id: str, status: StatusMessage) -> bool:
        """Appends one sample for a paired device; telemetry from unpaired devices is not stored."""
        with self._transaction(conflict=NotFound) as session:
            if self._get_device(session, device_id) is None:
                logger.debug(f"Device {device_id} not paired, skipping history save")
                return False
            session.add(DeviceHistory(device_id=device_id, timestamp=self._clock(), **status.telemetry()))
        return True

    def history_for(self, device_id: str, period: str = constants.DEFAULT_HISTORY_PERIOD) -> List[HistoryRead]:
        hours = constants.HISTORY_PERIODS.get(period, constants.HISTORY_PERIODS[constants.DEFAULT_HISTORY_PERIOD])
        since = self._clock() - timedelta(hours=hours)
        with self._transaction() as session:
            rows = session.exec(
                select(DeviceHistory)
                .where(DeviceHistory.device_id == device_id)
                .where(DeviceHistory.timestamp > since)
                .order_by(DeviceHistory.timestamp.desc())
                .limit(constants.HISTORY_QUERY_LIMIT)
            ).all()
            return [HistoryRead.model_validate(row, from_attributes=True) for row in rows]

    def prune_history(self, retention_days: int = constants.HISTORY_RETENTION_DAYS) -> int:
        cutoff = self._clock() - timedelta(days=retention_days)
        with self._transaction() as session:
            result = session.execute(delete(DeviceHistory).where(DeviceHistory.timestamp < cutoff))
            removed = result.rowcount or 0
        logger.info(f"Pruned {removed} history rows older than {retention_days} days")
        return removed
