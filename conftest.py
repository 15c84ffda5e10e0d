from datetime import datetime, timedelta, timezone

import pytest

from ledger.storage import InMemoryStorage


class FixedClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SwitchingOffStorage(InMemoryStorage):
    """In-memory storage whose system switch goes off after ``checks_before_off`` more checks."""

    def __init__(self):
        super().__init__()
        self.checks_before_off = None

    def is_system_enabled(self) -> bool:
        if self.checks_before_off is not None:
            if self.checks_before_off == 0:
                return False
            self.checks_before_off -= 1
        return super().is_system_enabled()


@pytest.fixture
def clock():
    # Noon in Sao Paulo
    return FixedClock(datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def switching_off_storage():
    return SwitchingOffStorage()
