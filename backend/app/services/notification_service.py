from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from tenacity import retry, stop_after_attempt, wait_exponential

logger = logging.getLogger("journalflow.notifications")

NOTIFY_REVIEW_INVITED = "review_invited"
NOTIFY_REVIEW_REMINDER = "review_reminder"
NOTIFY_REVIEW_COMPLETED = "review_completed"
NOTIFY_DECISION_ISSUED = "decision_issued"
NOTIFY_REVISION_SUBMITTED = "revision_submitted"
NOTIFY_PUBLISHED = "manuscript_published"


class NotificationService:
    """
    通知服务：封装 notifications 表的写入

    中文注释:
    1) 写入使用 service_role client，避免 RLS 导致写入失败。
    2) 通知是“尽力而为”：失败只记日志，绝不回滚触发它的状态流转。
    3) 真正的邮件投递由下游消费 notifications 表完成，不在本服务范围内。
    """

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from app.lib.api_client import supabase_admin

            client = supabase_admin
        self.client = client

    @staticmethod
    def _default_action_url(type: str, manuscript_id: Optional[str]) -> str:
        if type in {NOTIFY_REVIEW_INVITED, NOTIFY_REVIEW_REMINDER}:
            return "/dashboard?tab=reviewer"
        if manuscript_id:
            return f"/dashboard/manuscripts/{manuscript_id}"
        return "/dashboard/notifications"

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.2, min=0.2, max=2), reraise=True)
    def _insert_with_retry(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        res = self.client.table("notifications").insert(payload).execute()
        return getattr(res, "data", None) or []

    def notify(
        self,
        *,
        user_id: Optional[str],
        type: str,
        title: str,
        content: str,
        manuscript_id: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None

        payload = {
            "user_id": user_id,
            "manuscript_id": manuscript_id,
            "action_url": action_url or self._default_action_url(type, manuscript_id),
            "type": type,
            "title": title,
            "content": content,
            "is_read": False,
        }
        try:
            rows = self._insert_with_retry(payload)
            return rows[0] if rows else None
        except Exception as e:
            logger.warning("[Notifications] %s for user=%s failed (ignored): %s", type, user_id, e)
            return None

    def notify_many(
        self,
        user_ids: List[str],
        *,
        type: str,
        title: str,
        content: str,
        manuscript_id: Optional[str] = None,
    ) -> int:
        sent = 0
        for uid in user_ids:
            if self.notify(
                user_id=uid,
                type=type,
                title=title,
                content=content,
                manuscript_id=manuscript_id,
            ) is not None:
                sent += 1
        return sent
