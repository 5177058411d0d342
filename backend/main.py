import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("journalflow")

_SENTRY_ENABLED = False
try:
    from app.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        print("[sentry] enabled")
except Exception as e:
    # 中文注释: 零崩溃原则：Sentry 任何异常不得阻塞启动
    print(f"[sentry] init failed (ignored): {e}")

from app.api.v1 import doi, files, issues, manuscripts, reviews
from app.core.errors import WorkflowError
from app.core.middleware import ExceptionHandlerMiddleware, workflow_error_handler


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 中文注释:
    # - 进程崩溃/重启会让 DOI 记录停在 processing；启动时把超时的在途尝试记为失败，便于编辑重试。
    # - 开关：RECOVER_STALE_DEPOSITS_ON_STARTUP=0 可关闭（默认开启）；失败不阻塞启动。
    recover = (os.environ.get("RECOVER_STALE_DEPOSITS_ON_STARTUP") or "1").strip().lower() in {"1", "true", "yes", "on"}
    if recover:
        try:
            from app.services.doi_service import DoiService

            recovered = DoiService().recover_stale_deposits()
            if recovered:
                logger.warning("[doi] recovered %s stale deposit(s) on startup", len(recovered))
        except Exception as e:
            print(f"[doi] stale deposit recovery failed (ignored): {e}")
    yield


app = FastAPI(
    title="JournalFlow API",
    description="Manuscript lifecycle, peer review and DOI deposit workflow engine",
    version="1.0.0",
    lifespan=lifespan,
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins。

    中文注释:
    - 本地默认: http://localhost:3000
    - 生产/预发: 通过 FRONTEND_ORIGIN 或 FRONTEND_ORIGINS 注入（逗号分隔）
    """
    origins: list[str] = []

    single = (os.environ.get("FRONTEND_ORIGIN") or "").strip()
    if single:
        origins.append(single.rstrip("/"))

    many = (os.environ.get("FRONTEND_ORIGINS") or "").strip()
    if many:
        for part in many.split(","):
            o = (part or "").strip().rstrip("/")
            if o:
                origins.append(o)

    if not origins:
        origins = ["http://localhost:3000"]

    # 去重保持顺序
    return list(dict.fromkeys(origins))


# === 中间件配置 ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ExceptionHandlerMiddleware)
app.add_exception_handler(WorkflowError, workflow_error_handler)

# === 路由注册 ===
app.include_router(files.router, prefix="/api/v1")
app.include_router(manuscripts.router, prefix="/api/v1")
app.include_router(reviews.router, prefix="/api/v1")
app.include_router(issues.router, prefix="/api/v1")
app.include_router(doi.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "JournalFlow API is running", "docs": "/docs"}
