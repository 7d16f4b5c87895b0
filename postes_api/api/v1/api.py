"""
Router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from postes_api.api.v1.endpoints import auth, postes, system, users

api_router = APIRouter()

# Login
api_router.include_router(auth.router)

# User management (count is public, the rest admin-only)
api_router.include_router(users.router)

# Poles & photos
api_router.include_router(postes.router)

# Health / system info live at the root, outside the API prefix
system_router = system.router
