import time
import logging
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.errors import WorkflowError

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("journalflow")


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """
    统一渲染引擎错误：稳定 code + message，便于前端与运维脚本判断。
    """
    if exc.http_status >= 500:
        logger.warning(f"Workflow error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "success": False,
            "code": exc.code,
            "message": exc.message,
            "detail": exc.to_dict(),
        },
    )


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件
    所有请求写入结构化日志；未预期异常统一转为 500。
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(f"Method: {request.method} Path: {request.url.path} Status: {response.status_code} Time: {process_time:.4f}s")
            return response
        except WorkflowError as exc:
            return await workflow_error_handler(request, exc)
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "type": "http_exception"}
            )
        except Exception as e:
            logger.error(f"Unhandled Exception: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"success": False, "code": "server_error", "detail": "Internal server error"}
            )
