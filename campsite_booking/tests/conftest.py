import pytest

from ..services.calendar import CalendarIndex
from .factories import FrozenClock


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def calendar(clock):
    return CalendarIndex(clock=clock)
