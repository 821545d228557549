# tests/conftest.py
from __future__ import annotations

from typing import Any

import pytest

from core.normalizer import NormalizeContext, normalize
from tests.payloads import START, raw_plan


@pytest.fixture
def payload() -> dict[str, Any]:
    return raw_plan()


@pytest.fixture
def plan(payload):
    return normalize(payload, NormalizeContext(start_date=START))
