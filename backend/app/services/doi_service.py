from __future__ import annotations

from typing import Any, Optional

from app.core.config import CrossrefConfig, WorkflowConfig
from app.services.crossref_client import CrossrefClient
from app.services.doi_service_data import DoiServiceDataMixin
from app.services.doi_service_workflow import DoiServiceWorkflowMixin
from app.services.manuscript_store import ManuscriptStore


class DoiService(DoiServiceDataMixin, DoiServiceWorkflowMixin):
    """
    DOI 注册状态机（not_assigned -> pending -> processing -> success / failed，failed 可重试）。

    中文注释:
    - 每次尝试：CAS 认领 -> 调用注册方（显式超时）-> CAS 记录恰好一条 history。
    - 重试只由编辑/管理员显式触发（单条 / 批量），不做后台自动重试。
    - registrar 只需要实现 `async submit_deposit(manuscript) -> {"doi": ...}`，测试中可注入假实现。
    """

    def __init__(
        self,
        store: Optional[ManuscriptStore] = None,
        *,
        registrar: Any = None,
        crossref_config: Optional[CrossrefConfig] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        self.store = store or ManuscriptStore(config=config)
        self.workflow_config = config or self.store.config
        self.registrar = registrar or CrossrefClient(
            crossref_config if crossref_config is not None else CrossrefConfig.from_env(),
            timeout=self.workflow_config.registrar_timeout_seconds,
        )
