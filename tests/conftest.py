import pytest

import loanreview.persistence as persistence
from loanreview.config import EngineConfig, RetryConfig, ReviewConfig
from loanreview.external import LoggingExternalSystem
from loanreview.persistence import InMemoryStateStore
from loanreview.runtime import build_runtime


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    """Keep tests independent of local config files and database env vars."""
    monkeypatch.setenv("LOANREVIEW_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.delenv("LOANREVIEW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("LOANREVIEW_TICKET_SECRET", raising=False)
    persistence._store_instance = None
    yield
    persistence._store_instance = None


@pytest.fixture
def fast_config() -> ReviewConfig:
    """Configuration whose retry policy never actually waits."""
    return ReviewConfig(
        engine=EngineConfig(
            retry=RetryConfig(max_attempts=3, interval_seconds=0.0, jitter=0.0)
        )
    )


@pytest.fixture
def runtime(fast_config):
    return build_runtime(
        config=fast_config,
        store=InMemoryStateStore(),
        external=LoggingExternalSystem(),
    )
