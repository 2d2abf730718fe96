# medkit/api/router.py
from fastapi import APIRouter
from medkit.api import (
    routes_drugs,
    routes_alerts,
)

api_router = APIRouter()

api_router.include_router(routes_drugs.router)
api_router.include_router(routes_alerts.router)
