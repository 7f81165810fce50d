from fastapi import APIRouter
from khareedo.api.routes import (
    home,
    user_dashboard,
    users,
    admin_team,
    admin_properties,
    admin_leads,
    dashboards,
)

api_router = APIRouter()

api_router.include_router(home.router)
api_router.include_router(user_dashboard.router)
api_router.include_router(users.router)
api_router.include_router(admin_team.router)
api_router.include_router(admin_properties.router)
api_router.include_router(admin_leads.router)
api_router.include_router(dashboards.router)
