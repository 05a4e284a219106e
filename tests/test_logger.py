import logging

import pytest

from pipexec.logger import LOGGER_NAME, configure_logging, level_from_name
from pipexec.settings import LoggingSettings, LogLevel


def test_configure_logging_sets_levels() -> None:
    configure_logging(
        LoggingSettings(
            default_level=LogLevel.debug,
            enabled_loggers={"asyncio": LogLevel.error},
        )
    )

    assert logging.getLogger(LOGGER_NAME).level == logging.DEBUG
    assert logging.getLogger("asyncio").level == logging.ERROR


def test_configure_logging_without_settings_is_a_noop() -> None:
    logging.getLogger(LOGGER_NAME).setLevel(logging.WARNING)
    configure_logging(None)

    assert logging.getLogger(LOGGER_NAME).level == logging.WARNING


def test_level_from_name() -> None:
    assert level_from_name("INFO") == logging.INFO
    with pytest.raises(ValueError):
        level_from_name("verbose")
