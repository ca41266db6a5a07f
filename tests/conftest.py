"""Shared pytest fixtures."""

from typing import List

import pytest

from physio_service.models import Landmark

from tests.physio.frames import PLANK, make_frame


@pytest.fixture
def standing_frame() -> List[Landmark]:
    return make_frame()


@pytest.fixture
def plank_frame() -> List[Landmark]:
    return make_frame(PLANK)
