import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_root_logger():
    # the CLI installs its own stderr handler on the root logger
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
