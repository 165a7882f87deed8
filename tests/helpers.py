"""Shared test doubles."""

# pylint: disable=missing-function-docstring,missing-class-docstring,too-few-public-methods

from models import DomainEvent


class FakeClock:
    def __init__(self, value: float = 1_000.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class DummyMQTT:
    """Stands in for MQTTClient: records publishes and handlers."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.published: list[tuple[str, str, int]] = []
        self.handlers: list[tuple[str, object, int]] = []
        self.connected = ok
        self.disconnected = False

    async def publish_raw(self, *, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos))
        return self.ok

    def add_message_handler(self, *, topic, handler, qos=0):
        self.handlers.append((topic, handler, qos))

    def connect(self, timeout=None):
        return self.ok

    async def start_health_check(self):
        return None

    def disconnect(self):
        self.disconnected = True

    def get_stats(self):
        return {"mqtt_connected": self.connected, "mqtt_publish_count": len(self.published)}


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def broadcast(self, event: DomainEvent) -> int:
        self.events.append(event)
        return 0

    def of_type(self, event_type):
        return [e for e in self.events if e.type is event_type]


async def seed_door(store, *, floor=2, room_no="201", mac="AA:BB:CC:01", device_no="DL-01"):
    """Create a door, bound to a fresh device unless mac is None."""
    device_id = None
    if mac is not None:
        device_id = await store.add_device(device_no, mac)
    return await store.add_door(floor, room_no, device_id)
