import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("journalflow")

_SENTRY_ENABLED = False
try:
    from journalflow.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        logger.info("[sentry] enabled")
except Exception as e:
    # 中文注释: 零崩溃原则，Sentry 任何异常不得阻塞启动
    logger.warning("[sentry] init failed (ignored): %s", e)

from journalflow.api.v1 import (
    deadlines,
    decisions,
    internal,
    permissions,
    review_settings,
    reviews,
    submissions,
)
from journalflow.core.errors import WorkflowError
from journalflow.core.middleware import ExceptionHandlerMiddleware, workflow_error_handler

app = FastAPI(
    title="JournalFlow API",
    description="Editorial workflow engine for an academic journal",
    version="1.0.0",
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins。

    中文注释:
    - 本地默认: http://localhost:3000
    - 生产/预发: 通过 FRONTEND_ORIGINS 注入（逗号分隔）
    """
    origins: list[str] = []
    for part in (os.environ.get("FRONTEND_ORIGINS") or "").split(","):
        o = part.strip().rstrip("/")
        if o and o not in origins:
            origins.append(o)
    return origins or ["http://localhost:3000"]


# === 中间件配置 ===
# 1. 跨域资源共享 (CORS) - 允许前端访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 2. 统一异常处理
app.add_middleware(ExceptionHandlerMiddleware)
app.add_exception_handler(WorkflowError, workflow_error_handler)

# === 路由注册 ===
app.include_router(submissions.router, prefix="/api/v1")
app.include_router(decisions.router, prefix="/api/v1")
app.include_router(reviews.router, prefix="/api/v1")
app.include_router(deadlines.router, prefix="/api/v1")
app.include_router(permissions.router, prefix="/api/v1")
app.include_router(review_settings.router, prefix="/api/v1")
app.include_router(internal.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "JournalFlow API is running", "docs": "/docs"}
