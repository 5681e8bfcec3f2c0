from fastapi import APIRouter, Depends, HTTPException

from forgeflow.api.deps import get_project_store
from forgeflow.schemas.project import Project
from forgeflow.storage.project_store import ProjectStore

router = APIRouter()


@router.get("", response_model=list[Project])
async def list_projects(store: ProjectStore = Depends(get_project_store)) -> list[Project]:
    return await store.list_projects()


@router.get("/{project_id}", response_model=Project)
async def get_project(project_id: str, store: ProjectStore = Depends(get_project_store)) -> Project:
    project = await store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project
