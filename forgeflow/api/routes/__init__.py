from fastapi import APIRouter

from forgeflow.api.routes import health, projects, queues, sessions, templates, workflows

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(projects.router, prefix="/projects", tags=["projects"])
api_router.include_router(queues.router, prefix="/queues", tags=["queues"])
api_router.include_router(templates.router, prefix="/templates", tags=["templates"])
