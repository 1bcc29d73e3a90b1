# tests/integration/conftest.py - v1
"""Shared fixtures for integration tests.

Most integration tests run the real pipeline against in-memory, SQLite or
JSON state and need no external services. Redis-backed tests start a
container once per session through testcontainers.

Container networking:
- Uses DockerContainer directly with bridge network IP + internal port
- Required for devcontainer with docker-outside-of-docker (socket mount)
- Built-in testcontainers helpers return localhost:mapped_port which is
  unreachable from inside a devcontainer
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

import pytest

from prospector.core.errors import ProviderError
from prospector.core.models import ProviderResult

logger = logging.getLogger(__name__)


# ── Pytest markers ──────────────────────────────────────────────

def pytest_configure(config):
    config.addinivalue_line("markers", "redis: marks tests requiring Redis container")
    config.addinivalue_line("markers", "slow: marks tests that sleep on real timers")


# =====================================================================
#  DEVCONTAINER NETWORKING HELPERS
# =====================================================================

def _get_container_bridge_ip(container, max_attempts: int = 10) -> str:
    """Get container bridge network IP with retries."""
    for attempt in range(max_attempts):
        try:
            wrapped = container.get_wrapped_container()
            wrapped.reload()
            networks = wrapped.attrs.get("NetworkSettings", {}).get("Networks", {})
            for net_name, net_info in networks.items():
                ip = net_info.get("IPAddress", "")
                if ip:
                    logger.info(
                        "Container %s IP: %s (network: %s, attempt %d)",
                        wrapped.short_id, ip, net_name, attempt + 1,
                    )
                    return ip
            logger.debug("Container IP empty, attempt %d/%d", attempt + 1, max_attempts)
        except Exception as e:
            logger.debug("Error getting IP (attempt %d): %s", attempt + 1, e)
        time.sleep(0.5)

    raise RuntimeError(
        f"Could not obtain container bridge IP after {max_attempts} attempts"
    )


def _docker_available() -> bool:
    """Check if Docker daemon is reachable."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


# =====================================================================
#  SCRIPTED PROVIDERS - no network required
# =====================================================================

class ScriptedProvider:
    """Stand-in research provider.

    ``script`` maps a prospect name to a list of outcomes consumed one per
    call (the last one repeats). An outcome is an exception to raise or the
    text to answer with. Unscripted prospects get ``default_text``.
    """

    def __init__(self, name: str, default_text: str = "", sources=None, delay_s: float = 0.0):
        self.name = name
        self.default_text = default_text
        self.sources = list(sources or [])
        self.delay_s = delay_s
        self.script: dict[str, list] = {}
        self.calls: list[str] = []

    def on(self, prospect_name: str, *outcomes) -> ScriptedProvider:
        self.script[prospect_name] = list(outcomes)
        return self

    def calls_for(self, prospect_name: str) -> int:
        return self.calls.count(prospect_name)

    async def __call__(self, prospect) -> ProviderResult:
        self.calls.append(prospect.name)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        outcomes = self.script.get(prospect.name)
        outcome = self.default_text
        if outcomes:
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return ProviderResult(
            provider=self.name, text=outcome, sources=self.sources, tokens_estimate=100
        )


@pytest.fixture
def scripted_provider():
    """Factory for ``ScriptedProvider`` instances."""
    return ScriptedProvider


@pytest.fixture
def http_error():
    """Factory for provider errors carrying an HTTP status."""

    def _make(status: int, message: str | None = None) -> ProviderError:
        return ProviderError(message or f"HTTP {status}", status_code=status)

    return _make


# =====================================================================
#  REDIS CONTAINER - session scope (bridge IP)
# =====================================================================

REDIS_IMAGE = "redis:7-alpine"
REDIS_INTERNAL_PORT = 6379


@pytest.fixture(scope="session")
def redis_container():
    if not _docker_available():
        pytest.skip("Docker not available")

    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    container = DockerContainer(REDIS_IMAGE).with_exposed_ports(REDIS_INTERNAL_PORT)
    container.start()
    wait_for_logs(container, predicate=r"Ready to accept connections", timeout=60)

    ip = _get_container_bridge_ip(container)
    logger.info("Redis ready at %s:%d", ip, REDIS_INTERNAL_PORT)
    yield {"host": ip, "port": REDIS_INTERNAL_PORT}
    container.stop()


@pytest.fixture(scope="session")
def redis_url(redis_container) -> str:
    c = redis_container
    return f"redis://{c['host']}:{c['port']}/0"


@pytest.fixture
def redis_ledger_store(redis_url):
    from prospector.ledger.redis_store import RedisLedgerStore

    store = RedisLedgerStore(redis_url)
    yield store
    store._client.flushdb()
    store.close()


@pytest.fixture
def unique_item_id() -> str:
    return f"item_{uuid.uuid4().hex[:8]}"
