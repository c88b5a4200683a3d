#!/usr/bin/env python3
"""pytest fixtures"""

import pytest

from tests.helpers import FakeClient, make_info


@pytest.fixture
def device_info():
    return make_info()


@pytest.fixture
def fake_client():
    return FakeClient()
