"""
Shared fixtures. Byte builders for modules and archives live in builders.py.
"""

import logging

import pytest

from module_audit import logging_config


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging side effects so caplog sees package records."""
    yield
    logger = logging.getLogger(logging_config.LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging_config._logger = None


@pytest.fixture
def assets_dir(tmp_path):
    directory = tmp_path / "assets"
    directory.mkdir()
    return directory
