from fastapi import APIRouter
from app.api import (
    routes_pharmacy_inventory,
    routes_pharmacy_orders,
    routes_pharmacy_revenue,
)

api_router = APIRouter()

api_router.include_router(routes_pharmacy_inventory.router)
api_router.include_router(routes_pharmacy_orders.router)
api_router.include_router(routes_pharmacy_revenue.router)
