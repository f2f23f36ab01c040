# server/app/tasks.py

import  asyncio
import  inspect
from    typing          import Callable, List

from    config          import constants
from    database.models import utcnow
from    utils.logger    import getLogger
from    .ownership      import OwnershipStore
from    .presence       import PresenceTracker

logger = getLogger("Tasks")


async def run_periodically(name: str, interval: float, action: Callable[[], object]):
    """Runs `action` every `interval` seconds until cancelled; failures are logged, not fatal."""
    logger.info(f"Periodic task '{name}' started (every {interval}s)")
    while True:
        await asyncio.sleep(interval)
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Periodic task '{name}' failed: {e}")


def start_background_tasks(presence: PresenceTracker, store: OwnershipStore) -> List[asyncio.Task]:
    return [
        asyncio.create_task(run_periodically(
            "presence-sweep",
            constants.PRESENCE_SWEEP_INTERVAL,
            lambda: presence.sweep(utcnow()),
        )),
        asyncio.create_task(run_periodically(
            "history-prune",
            constants.HISTORY_PRUNE_INTERVAL,
            # blocking delete, kept off the event loop
            lambda: asyncio.to_thread(store.prune_history),
        )),
    ]


async def stop_background_tasks(tasks: List[asyncio.Task]):
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
