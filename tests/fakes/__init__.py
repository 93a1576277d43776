from .fake_notifications import FakeClock, RecordingGateway
from .fake_queue_store import FakeQueueStore

__all__ = ["FakeClock", "FakeQueueStore", "RecordingGateway"]
