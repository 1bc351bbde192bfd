import re
import logging

import pytest

from hot_counter import create_app
from hot_counter.config import Config
from hot_counter.state import GlobalCounter

_COUNT = re.compile(r'id="(global|user)-count">(\d+)<')


def counts(resp) -> dict:
    return {name: int(value) for name, value in _COUNT.findall(resp.get_data(as_text=True))}


@pytest.fixture
def cfg():
    return Config(secret_key="test-secret", build="test")


@pytest.fixture
def counter():
    return GlobalCounter()


@pytest.fixture
def app(cfg, counter):
    app = create_app(cfg, counter)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def reset_service_logger():
    yield
    logger = logging.getLogger("hot-counter")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
