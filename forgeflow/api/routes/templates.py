from fastapi import APIRouter

from forgeflow.domain.templates import catalog_snapshot

router = APIRouter()


@router.get("")
async def list_templates() -> list[dict]:
    """Template catalog: repository, core files and required env vars per template."""
    return catalog_snapshot()
