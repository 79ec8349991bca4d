"""Shared fixtures for the test suite."""

from __future__ import annotations

import pytest

from chardat_exchange.scene import SceneNode

from character_factory import make_character


@pytest.fixture
def source_character() -> SceneNode:
    return make_character(seed=1, name="Source")


@pytest.fixture
def target_character() -> SceneNode:
    return make_character(seed=2, name="Target")
