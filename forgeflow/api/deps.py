"""FastAPI dependencies resolving services from the per-process container."""

from fastapi import Request

from forgeflow.queue.manager import QueueService
from forgeflow.services.container import ServiceContainer
from forgeflow.services.workflow_service import WorkflowService
from forgeflow.storage.project_store import ProjectStore
from forgeflow.storage.session_store import SessionStore


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_session_store(request: Request) -> SessionStore:
    return get_container(request).sessions


def get_project_store(request: Request) -> ProjectStore:
    return get_container(request).projects


def get_queue(request: Request) -> QueueService:
    return get_container(request).queue


def get_workflow_service(request: Request) -> WorkflowService:
    return get_container(request).workflows
