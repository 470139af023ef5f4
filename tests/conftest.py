"""Shared pytest fixtures for Imobly boleto tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_webhook_tasks_client():
    """Clear the webhook route's module-level TasksClient.

    Inline deliveries accumulate on the shared client; without the reset
    tasks recorded by one test leak into the next.
    """
    import imobly.api.routes.webhooks_bradesco as webhook_module

    webhook_module._tasks_client.clear()
    yield
    webhook_module._tasks_client.clear()


@pytest.fixture
def settings():
    from helpers import make_settings

    return make_settings()


@pytest.fixture
def store():
    """In-memory faturas/fatura_boletos tables patched into the repositories."""
    from helpers import InMemoryStore

    memory = InMemoryStore()
    with memory.patched():
        yield memory
