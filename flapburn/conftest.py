import copy

import pytest

import flapburn.core.config as flap_config


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "requires_config: needs a config.json with live RPCs"
    )


@pytest.fixture(autouse=True)
def isolated_config():
    """Run every test against an empty config, whatever config.json is on disk."""
    saved = copy.deepcopy(flap_config.CONFIG)
    flap_config.set_config({})
    yield
    flap_config.set_config(saved)
