"""
Warehouse Service API

FastAPI application for a warehouse and delivery management backend:
inventory items, storage locations, the stock movement journal, deliveries
with tracking history, suppliers and their invoices, delivery companies,
users, stock alerts, delivery analytics and the admin dashboard.

Endpoints (see the routers for details):
    /auth, /users, /inventory, /locations, /movements, /deliveries,
    /stock-alerts, /suppliers, /supplier-invoices, /delivery-companies,
    /statistics
    /ws: websocket stream of domain events
    GET /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from . import events, models, notifications
from .config import CORS_ORIGINS, LOG_LEVEL, PORT, SCHEDULER_ENABLED
from .database import engine
from .errors import register_exception_handlers
from .rate_limit import limiter
from .routers import (
    auth,
    deliveries,
    delivery_companies,
    inventory,
    locations,
    movements,
    statistics,
    stock_alerts,
    supplier_invoices,
    suppliers,
    users,
    ws,
)
from .scheduler import scheduler

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)


def mail_stock_alert(event: str, payload: Dict[str, Any]) -> None:
    notifications.send_stock_alert(payload)


events.bus.subscribe(events.STOCK_ALERT, mail_stock_alert)
events.bus.subscribe(events.STOCK_EXPIRY, mail_stock_alert)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if SCHEDULER_ENABLED:
        scheduler.start()
    yield
    if SCHEDULER_ENABLED:
        scheduler.stop()


app = FastAPI(title="warehouse-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

register_exception_handlers(app)

for module in (
    auth,
    users,
    inventory,
    locations,
    movements,
    deliveries,
    statistics,
    stock_alerts,
    suppliers,
    supplier_invoices,
    delivery_companies,
    ws,
):
    app.include_router(module.router)


@app.get("/healthz", response_model=dict)
@limiter.exempt
def health():
    """
    Health check endpoint for the warehouse service.

    Returns:
        dict: {"status": "healthy"} plus the scheduler's task state
    """
    return {"status": "healthy", "scheduler": scheduler.get_status()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("warehouse.main:app", host="0.0.0.0", port=PORT)
