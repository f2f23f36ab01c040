# server/app/dispatcher.py

from    datetime        import datetime
from    typing          import Callable, Optional

from    database.models import utcnow
from    utils.logger    import getLogger
from    .codec          import PresenceMessage, StatusMessage, UnknownMessage, decode
from    .confirmation   import ConfirmationRegistry
from    .errors         import DecodeFailure
from    .presence       import PresenceTracker

logger = getLogger("Dispatcher")

HistorySink = Callable[[str, StatusMessage], bool]


class MessageDispatcher:
    """
    Routes decoded bus messages to presence, the confirmation registry and
    the history sink. dispatch() never raises: one bad packet must not stop
    presence tracking for the other devices.
    """

    def __init__(self, presence: PresenceTracker, registry: ConfirmationRegistry, history_sink: Optional[HistorySink] = None):
        self.presence       = presence
        self.registry       = registry
        self.history_sink   = history_sink
        self._clock         = utcnow

    def dispatch(self, topic: str, payload, now: Optional[datetime] = None) -> None:
        now = now or self._clock()
        try:
            message = decode(topic, payload)
        except DecodeFailure as e:
            logger.warning(f"Dropped message on {topic}: {e}")
            return

        if isinstance(message, StatusMessage):
            self.handle_status(message, now)
        elif isinstance(message, PresenceMessage):
            self.presence.record_online(message.device_id, message.online, now)
        elif isinstance(message, UnknownMessage):
            logger.debug(f"Ignoring '{message.kind}' message from {message.device_id}")

    def handle_status(self, message: StatusMessage, now: datetime) -> None:
        self.presence.record_status(message.device_id, message.telemetry(), now)

        if message.confirmation_code:
            self.registry.advertise(message.device_id, message.confirmation_code)

        if self.history_sink is None:
            return
        try:
            self.history_sink(message.device_id, message)
        except Exception as e:
            logger.error(f"Error saving status of {message.device_id}: {e}")
