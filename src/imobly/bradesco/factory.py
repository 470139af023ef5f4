"""Builds the Bradesco object graph from settings."""

from imobly.bradesco.client import BradescoApiClient
from imobly.bradesco.fake import FakeBradescoApiClient
from imobly.bradesco.gateway import BoletoApiClient, BradescoBoletoGateway
from imobly.bradesco.settings import BradescoSettings
from imobly.domain.events import EventDispatcher


def build_client(settings: BradescoSettings) -> BoletoApiClient:
    """Real mTLS client, or the in-memory fake when BRADESCO_USE_FAKE is set."""
    if settings.use_fake:
        return FakeBradescoApiClient(settings)
    return BradescoApiClient(settings)


def build_gateway(
    settings: BradescoSettings | None = None,
    dispatcher: EventDispatcher | None = None,
) -> BradescoBoletoGateway:
    settings = settings or BradescoSettings.from_env()
    return BradescoBoletoGateway(build_client(settings), settings, dispatcher=dispatcher)
