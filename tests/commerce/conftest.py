import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def commerce_bed():
    from commerce.domain import commerce

    bed = DomainFixture(commerce)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(commerce_bed):
    with commerce_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _reset_state(_ctx):
    """Isolate tests: fresh settings, adapters, notifier and persisted data."""
    from commerce.config import get_settings
    from commerce.gateway import reset_gateways
    from commerce.notification import reset_notifier

    get_settings.cache_clear()
    reset_gateways()
    reset_notifier()
    yield

    from protean.utils.globals import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()
    current_domain.event_store.store._data_reset()

    reset_gateways()
    reset_notifier()
    get_settings.cache_clear()


@pytest.fixture()
def notifier():
    from commerce.notification import FakeNotifier, set_notifier

    fake = FakeNotifier()
    set_notifier(fake)
    return fake


@pytest.fixture()
def fake_gateway():
    from commerce.gateway import set_gateway
    from commerce.gateway.fake_adapter import FakeGateway

    gateway = FakeGateway()
    set_gateway(gateway)
    return gateway
