import sys
import threading
from pathlib import Path

import pytest

# Ensure 'src' is on sys.path for test imports without installing the package
ROOT = Path(__file__).resolve().parents[1]
src = ROOT / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from reliquary.config import SaveSettings  # noqa: E402
from reliquary.coordinator import SaveCoordinator  # noqa: E402
from reliquary.storage import JsonFileStorage  # noqa: E402


class RecordingStorage(JsonFileStorage):
    """JsonFileStorage that records every call and can hold writes at a gate."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = []
        self.gate = threading.Event()
        self.gate.set()
        self.write_started = threading.Event()

    def write(self, path, value):
        self.write_started.set()
        self.gate.wait(5)
        self.calls.append(("write", Path(path).name))
        super().write(path, value)

    def read(self, path, type_=None):
        self.calls.append(("read", Path(path).name))
        if type_ is None:
            return super().read(path)
        return super().read(path, type_)

    def delete(self, path):
        self.calls.append(("delete", Path(path).name))
        return super().delete(path)


@pytest.fixture
def settings(tmp_path: Path) -> SaveSettings:
    return SaveSettings(save_directory=tmp_path / "saves", auto_save=False)


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def coordinator(settings: SaveSettings, storage: RecordingStorage):
    c = SaveCoordinator(settings, storage=storage)
    storage.calls.clear()
    yield c
    storage.gate.set()
    c.shutdown(timeout=5)


def settle(coordinator: SaveCoordinator) -> None:
    """Wait for the worker to go idle, then deliver queued notifications."""
    assert coordinator.wait_until_idle(timeout=5)
    coordinator.update(0)
