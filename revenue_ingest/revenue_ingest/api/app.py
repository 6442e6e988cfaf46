from fastapi import FastAPI

from revenue_ingest.api.routes_revenue import router as revenue_router
from revenue_ingest.api.routes_revenue import default_rates_provider, default_source_factory
from revenue_ingest.logging_setup import init_logging

init_logging()

app = FastAPI(title="revenue_ingest", version="0.1.0")

# Swappable upstream wiring (tests plug in in-memory sources)
app.state.source_factory = default_source_factory
app.state.rates_provider = default_rates_provider

app.include_router(revenue_router)

@app.get("/health")
def health():
    return {"ok": True}
