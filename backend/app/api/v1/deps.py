"""
API 层的服务装配（FastAPI Depends）

中文注释:
- 每个请求装配一组共享同一 ManuscriptStore 的服务，测试中通过 app.dependency_overrides 替换 store / registrar。
- DOI 注册方优先取 app.state.registrar（便于进程内共享 httpx 配置），否则按环境变量创建 CrossrefClient。
"""

from typing import Any

from fastapi import Depends, Request

from app.core.config import CrossrefConfig, WorkflowConfig
from app.services.crossref_client import CrossrefClient
from app.services.doi_service import DoiService
from app.services.editorial_service import EditorialService
from app.services.manuscript_store import ManuscriptStore
from app.services.notification_service import NotificationService
from app.services.publishing_service import PublishingService
from app.services.revision_service import RevisionService
from app.services.reviewer_service import ReviewerService
from app.services.storage_service import StorageService


def get_workflow_config() -> WorkflowConfig:
    return WorkflowConfig.from_env()


def get_store(config: WorkflowConfig = Depends(get_workflow_config)) -> ManuscriptStore:
    return ManuscriptStore(config=config)


def get_registrar(request: Request, config: WorkflowConfig = Depends(get_workflow_config)) -> Any:
    registrar = getattr(request.app.state, "registrar", None)
    if registrar is not None:
        return registrar
    return CrossrefClient(CrossrefConfig.from_env(), timeout=config.registrar_timeout_seconds)


def get_notification_service(store: ManuscriptStore = Depends(get_store)) -> NotificationService:
    return NotificationService(store.client)


def get_editorial_service(
    store: ManuscriptStore = Depends(get_store),
    notifications: NotificationService = Depends(get_notification_service),
) -> EditorialService:
    return EditorialService(store, notifications, config=store.config)


def get_reviewer_service(
    store: ManuscriptStore = Depends(get_store),
    notifications: NotificationService = Depends(get_notification_service),
    editorial: EditorialService = Depends(get_editorial_service),
) -> ReviewerService:
    return ReviewerService(store, notifications, editorial, config=store.config)


def get_revision_service(
    store: ManuscriptStore = Depends(get_store),
    editorial: EditorialService = Depends(get_editorial_service),
) -> RevisionService:
    return RevisionService(store, editorial)


def get_doi_service(
    store: ManuscriptStore = Depends(get_store),
    registrar: Any = Depends(get_registrar),
) -> DoiService:
    return DoiService(store, registrar=registrar, config=store.config)


def get_publishing_service(
    store: ManuscriptStore = Depends(get_store),
    doi_service: DoiService = Depends(get_doi_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> PublishingService:
    return PublishingService(store, doi_service, notifications, config=store.config)


def get_storage_service(store: ManuscriptStore = Depends(get_store)) -> StorageService:
    return StorageService(store.client, config=store.config)
