import os
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from shopqueue.clock import FrozenClock
from shopqueue.config import Settings
from shopqueue.services.engine import build_engine

SHOP_TZ = ZoneInfo("Asia/Shanghai")


def shop_time(year: int, month: int, day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=SHOP_TZ)


@pytest.fixture
def clock() -> FrozenClock:
    # Thursday 5 June 2025, before opening
    return FrozenClock(shop_time(2025, 6, 5, 9, 0))


@pytest.fixture
def make_engine(clock):
    def _make(**overrides):
        values = {
            "use_mock_data": True,
            "seed_demo_data": False,
            "enable_sweeper": False,
        }
        values.update(overrides)
        return build_engine(Settings(**values), clock=clock)

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
