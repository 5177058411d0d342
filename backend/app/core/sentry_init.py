from typing import Any

from app.core.config import SentryConfig

_SENSITIVE_KEYS = {
    "password",
    "access_token",
    "refresh_token",
    "token",
    "authorization",
    "cookie",
    "set-cookie",
    "service_role_key",
    "login_passwd",
    "depositor_password",
    # 审稿保密意见与编辑内部备注不得离开系统
    "comments_for_editor",
    "internal_notes",
}

_MAX_TEXT = 5000


def _scrub(value: Any) -> Any:
    """
    隐私清洗：递归去除敏感字段、上传文件字节与超长文本。
    """
    if isinstance(value, (bytes, bytearray)):
        return "[Filtered]"
    if isinstance(value, str) and len(value) > _MAX_TEXT:
        return "[Filtered]"

    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if str(k).strip().lower() in _SENSITIVE_KEYS:
                out[str(k)] = "[Filtered]"
                continue
            out[str(k)] = _scrub(v)
        return out

    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]

    return value


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    # 中文注释: 不上传请求体（稿件文件、审稿意见），只保留诊断所需的请求行与安全头。
    request = event.get("request")
    if isinstance(request, dict):
        headers = request.get("headers")
        if isinstance(headers, dict):
            request["headers"] = {
                k: v for k, v in headers.items() if str(k).strip().lower() not in _SENSITIVE_KEYS
            }
        for key in ("cookies", "data", "body"):
            if key in request:
                request[key] = "[Filtered]"
        event["request"] = request

    for section in ("extra", "contexts"):
        obj = event.get(section)
        if isinstance(obj, dict):
            event[section] = _scrub(obj)

    return event


def init_sentry() -> bool:
    """
    初始化 Sentry。

    零崩溃原则：
    - 若未配置 DSN / 显式禁用，则直接返回 False。
    - 任何初始化异常都应在调用方 try/except 处理，不得阻塞启动。
    """
    cfg = SentryConfig.from_env()
    if not cfg.enabled or not cfg.dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        before_send=_before_send,
        max_request_body_size="never",
    )
    return True
