import pytest

from revenue_ingest.api.app import app
from revenue_ingest.api.routes_revenue import default_rates_provider, default_source_factory


@pytest.fixture(autouse=True)
def _reset_wiring():
    app.state.source_factory = default_source_factory
    app.state.rates_provider = default_rates_provider
    yield
