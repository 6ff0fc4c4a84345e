from collections.abc import Generator

import pytest
from loguru import logger

from dk_util.log.router import LogRouter
from dk_util.log.router import set_default_router
from dk_util.log.testing import CapturingConsole


@pytest.fixture
def loguru_messages() -> Generator[list[str], None, None]:
    """Collect every loguru message emitted during the test, at TRACE and above."""
    messages: list[str] = []
    sink_id = logger.add(
        lambda msg: messages.append(str(msg).rstrip("\n")),
        level="TRACE",
        format="{level}: {message}",
    )
    try:
        yield messages
    finally:
        logger.remove(sink_id)


@pytest.fixture
def console() -> CapturingConsole:
    return CapturingConsole()


@pytest.fixture
def default_router(console: CapturingConsole) -> Generator[LogRouter, None, None]:
    """Install a console-capturing router as the process default for the duration of the test."""
    router = LogRouter(console_sink=console)
    router.set_show_location(False)
    router.set_show_timestamp(False)
    router.set_use_color(False)
    set_default_router(router)
    try:
        yield router
    finally:
        set_default_router(None)
