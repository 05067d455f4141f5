"""
Shared pytest fixtures for the pageshot test suite.

No real browser is started anywhere in the suite: engines are built over the
fake playwright objects in fakes.py.
"""

import pytest

from fakes import FakeBrowserStack, RecordingTimer
from pageshot_agent.config import Settings
from pageshot_agent.decoder import decode_path
from pageshot_agent.engine import RenderEngine
from pageshot_agent.hooks import SiteHookRegistry


@pytest.fixture
def settings(tmp_path):
    return Settings(session_dir=tmp_path / "sessions")


@pytest.fixture
def make_engine(settings):
    """
    Return a function building a RenderEngine over a fake browser stack.

    Example:
        engine = make_engine(stack, timer=RecordingTimer(fire=True))
    """

    def _make(stack: FakeBrowserStack, *, timer=None, hooks=(), engine_settings=None):
        return RenderEngine(
            engine_settings or settings,
            registry=SiteHookRegistry(hooks),
            playwright_factory=stack.factory,
            timer=timer or RecordingTimer(fire=False),
        )

    return _make


@pytest.fixture
def render_request():
    def _request(path: str = "/https%3A%2F%2Fexample.com%2F/", **kwargs):
        return decode_path(path, **kwargs)

    return _request
