from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_doi_service
from app.core.errors import ExternalServiceError
from app.core.roles import Actor, get_current_actor
from app.models.doi import DepositAttemptRequest, DepositStatus, DoiMetadata, ManualDoiRequest
from app.services.doi_service import DoiService

router = APIRouter(prefix="/doi", tags=["DOI"])


def _attempt_response(meta: DoiMetadata) -> dict:
    # 中文注释: 失败的尝试已写入 deposit_history，这里再以 502 告知调用方
    if meta is not None and meta.deposit_status == DepositStatus.FAILED:
        raise ExternalServiceError(
            meta.deposit_error or "DOI deposit failed",
            extra={"doi_metadata": meta.model_dump(mode="json")},
        )
    return {"success": True, "data": meta}


@router.get("/deposits")
async def list_deposits(
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    return {"success": True, "data": service.list_deposits(actor, status=status)}


@router.get("/deposits/stats")
async def deposit_stats(
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    return {"success": True, "data": service.deposit_stats(actor)}


@router.post("/deposits/bulk-retry")
async def bulk_retry(
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    """
    批量重试所有失败的 DOI 注册（仅管理员）
    """
    return {"success": True, "data": await service.bulk_retry(actor)}


@router.post("/deposits/recover")
async def recover_stale_deposits(
    older_than_minutes: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    recovered = service.recover_stale_deposits(older_than_minutes=older_than_minutes, actor=actor)
    return {"success": True, "data": {"recovered": recovered, "count": len(recovered)}}


@router.get("/deposits/{manuscript_id}")
async def get_deposit(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    return {"success": True, "data": service.get_deposit(manuscript_id, actor)}


@router.post("/deposits/{manuscript_id}/deposit")
async def deposit(
    manuscript_id: str,
    payload: Optional[DepositAttemptRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    attempt_number = payload.attempt_number if payload else None
    meta = await service.deposit(manuscript_id, actor, attempt_number=attempt_number)
    return _attempt_response(meta)


@router.post("/deposits/{manuscript_id}/retry")
async def retry(
    manuscript_id: str,
    payload: Optional[DepositAttemptRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    attempt_number = payload.attempt_number if payload else None
    meta = await service.retry(manuscript_id, actor, attempt_number=attempt_number)
    return _attempt_response(meta)


@router.post("/deposits/{manuscript_id}/assign")
async def manual_assign(
    manuscript_id: str,
    payload: ManualDoiRequest,
    actor: Actor = Depends(get_current_actor),
    service: DoiService = Depends(get_doi_service),
):
    """
    管理员人工指定 DOI（不调用注册方）
    """
    return {"success": True, "data": service.manual_assign(manuscript_id, payload.doi, actor)}
