from starlette.requests import HTTPConnection

from dropline.core.config import Settings
from dropline.services.bus import TopicBus
from dropline.services.coordinator import AssignmentCoordinator
from dropline.services.live_status import LiveStatusService


def build_store(settings: Settings):
    if settings.use_mongo:
        from dropline.db import get_db
        from dropline.repos.mongo import MongoOrderStore
        return MongoOrderStore(get_db())
    from dropline.repos.inmemory import InMemoryOrderStore
    return InMemoryOrderStore()


def build_services(settings: Settings, store=None):
    """One store/bus/live/coordinator set per application instance."""
    store = store if store is not None else build_store(settings)
    bus = TopicBus(queue_size=settings.subscriber_queue_size)
    live = LiveStatusService(store, bus, eta_minutes=settings.eta_minutes)
    return store, bus, live, AssignmentCoordinator(store, live)


# HTTPConnection covers both HTTP requests and websockets
def get_coordinator(conn: HTTPConnection) -> AssignmentCoordinator:
    return conn.app.state.coordinator

def get_live(conn: HTTPConnection) -> LiveStatusService:
    return conn.app.state.live
