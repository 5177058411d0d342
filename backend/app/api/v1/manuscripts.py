from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import (
    get_editorial_service,
    get_publishing_service,
    get_revision_service,
)
from app.core.roles import Actor, get_current_actor
from app.models.decision import DecisionRequest
from app.models.manuscript import AssignEditorRequest, ManuscriptSubmit
from app.models.revision import RevisionSubmit
from app.services.editorial_service import EditorialService
from app.services.publishing_service import PublishingService
from app.services.revision_service import RevisionService

router = APIRouter(prefix="/manuscripts", tags=["Manuscripts"])


@router.post("", status_code=201)
async def submit_manuscript(
    payload: ManuscriptSubmit,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    作者投稿：生成稿件编号并创建 Revision v1
    """
    manuscript = service.submit_manuscript(actor, payload)
    return {"success": True, "data": manuscript}


@router.get("")
async def list_manuscripts(
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    return {"success": True, "data": service.list_manuscripts(actor, status=status)}


@router.get("/stats")
async def manuscript_stats(
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    return {"success": True, "data": service.get_statistics(actor)}


@router.get("/{manuscript_id}")
async def get_manuscript(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    return {"success": True, "data": service.get_manuscript(manuscript_id, actor)}


@router.delete("/{manuscript_id}")
async def delete_manuscript(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    service.delete_manuscript(manuscript_id, actor)
    return {"success": True, "data": {"id": manuscript_id, "deleted": True}}


@router.put("/{manuscript_id}/editor")
async def assign_editor(
    manuscript_id: str,
    payload: AssignEditorRequest,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    manuscript = service.assign_editor(manuscript_id, payload.editor_id, actor)
    return {"success": True, "data": manuscript}


@router.post("/{manuscript_id}/decision")
async def record_decision(
    manuscript_id: str,
    payload: DecisionRequest,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    manuscript = service.record_decision(manuscript_id, actor, payload)
    return {"success": True, "data": manuscript}


@router.post("/{manuscript_id}/revisions", status_code=201)
async def submit_revision(
    manuscript_id: str,
    payload: RevisionSubmit,
    actor: Actor = Depends(get_current_actor),
    service: EditorialService = Depends(get_editorial_service),
):
    manuscript = service.submit_revision(manuscript_id, actor, payload)
    return {"success": True, "data": manuscript}


@router.get("/{manuscript_id}/revisions")
async def get_revision_history(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: RevisionService = Depends(get_revision_service),
):
    return {"success": True, "data": service.get_history(manuscript_id, actor)}


@router.get("/{manuscript_id}/revisions/compare/{version_a}/{version_b}")
async def compare_revisions(
    manuscript_id: str,
    version_a: int,
    version_b: int,
    actor: Actor = Depends(get_current_actor),
    service: RevisionService = Depends(get_revision_service),
):
    return {"success": True, "data": service.compare(manuscript_id, version_a, version_b, actor)}


@router.post("/{manuscript_id}/publish")
async def publish_manuscript(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    manuscript = await service.publish_manuscript(manuscript_id, actor)
    return {"success": True, "data": manuscript}
