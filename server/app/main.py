# server/app/main.py

from    fastapi                     import FastAPI
from    .routes                     import router
from    .mqtt_client                import MQTTClient
from    .confirmation               import ConfirmationRegistry
from    .dispatcher                 import MessageDispatcher
from    .ownership                  import OwnershipStore
from    .presence                   import PresenceTracker
from    .tasks                      import start_background_tasks, stop_background_tasks

from    utils.logger                import getLogger
from    database.db                 import engine, init_db

app     = FastAPI(title="Solar Controller Relay Server")
logger  = getLogger("SolarServer")

app.include_router(router)


def build_services(target_engine):
    """Wires the in-memory maps, the store and the dispatcher around one engine."""
    presence    = PresenceTracker()
    registry    = ConfirmationRegistry()
    store       = OwnershipStore(target_engine, registry, presence)
    dispatcher  = MessageDispatcher(presence, registry, history_sink=store.record_history)
    return presence, registry, store, dispatcher


@app.on_event("startup")
async def startup_event():
    try:
        init_db()                                                   # Start the database.
    except Exception as e:
        logger.critical(f"Database initialization failed: {e}")
        raise

    presence, registry, store, dispatcher = build_services(engine)
    app.state.presence  = presence
    app.state.registry  = registry
    app.state.store     = store
    app.state.mqtt      = MQTTClient(dispatcher)
    app.state.mqtt.start()                                          # Start the MQTT client
    app.state.tasks     = start_background_tasks(presence, store)

@app.on_event("shutdown")
async def shutdown_event():
    await stop_background_tasks(app.state.tasks)
    app.state.mqtt.stop()                                           # Stop the MQTT client gracefully on shutdown.
    engine.dispose()                                                # In-flight requests have finished by now
    logger.info("Server stopped")
