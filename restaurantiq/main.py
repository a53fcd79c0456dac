"""FastAPI application exposing the RestaurantIQ inventory API."""

import logging
import os
from typing import Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from restaurantiq.api.routes.email import router as email_router
from restaurantiq.api.routes.inventory import router as inventory_router
from restaurantiq.api.routes.invoices import router as invoices_router
from restaurantiq.api.routes.notifications import router as notifications_router
from restaurantiq.api.routes.portfolio import router as portfolio_router
from restaurantiq.api.routes.smart_orders import router as smart_orders_router
from restaurantiq.api.routes.staff import router as staff_router
from restaurantiq.api.routes.vendors import router as vendors_router
from restaurantiq.config import supabase_client

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="RestaurantIQ")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-restaurant-id"],
)

# Include Routers
app.include_router(inventory_router)
app.include_router(smart_orders_router)
app.include_router(invoices_router)
app.include_router(email_router)
app.include_router(vendors_router)
app.include_router(staff_router)
app.include_router(portfolio_router)
app.include_router(notifications_router)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/config")
def supabase_config() -> Dict[str, str]:
    if not supabase_client.SUPABASE_URL or not supabase_client.SUPABASE_ANON_KEY:
        raise HTTPException(status_code=500, detail="Supabase configuration missing.")
    return {"supabaseUrl": supabase_client.SUPABASE_URL, "supabaseAnonKey": supabase_client.SUPABASE_ANON_KEY}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("restaurantiq.main:app", host="127.0.0.1", port=8000, reload=True)
