"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from parcel_backend.app.api.v1.endpoints import auth, users, parcels

router = APIRouter()

# Authentication and token lifecycle
router.include_router(auth.router)

# User registration and admin user management
router.include_router(users.router)

# Parcel booking, tracking and delivery
router.include_router(parcels.router)
