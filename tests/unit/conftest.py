from __future__ import annotations

from types import SimpleNamespace

import pytest
from fakes import make_apis


@pytest.fixture
def apis() -> SimpleNamespace:
    return make_apis()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleeps instead of sleeping."""
    return []
