"""
CaféMind 点单助手入口
FastAPI 后端服务 - 对外提供多轮对话接口
"""

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from infrastructure.exceptions import APIError
from infrastructure.health import HealthStatus
from infrastructure.monitoring import MonitoringMiddleware, get_metrics_collector, setup_logging
from services.session_manager import SessionManager
from workflow.factory import AssistantRuntime, build_runtime
from app.api.schemas import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)


async def _cleanup_idle_sessions(sessions: SessionManager, interval: float):
    """定期清理空闲会话"""
    while True:
        await asyncio.sleep(interval)
        sessions.cleanup_idle()


def create_app(runtime: Optional[AssistantRuntime] = None) -> FastAPI:
    """创建应用

    Args:
        runtime: 预先装配的运行时组件，为空时在启动阶段按配置装配
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(settings)
        sessions = app.state.runtime.sessions

        cleanup_task = asyncio.create_task(
            _cleanup_idle_sessions(sessions, settings.session.cleanup_interval)
        )
        logger.info(f"{settings.app_name} 已启动")
        try:
            yield
        finally:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
            logger.info(f"{settings.app_name} 已停止")

    app = FastAPI(
        title=settings.app_name,
        description="基于 LangGraph 的多阶段咖啡店点单助手",
        version=settings.app_version,
        lifespan=lifespan
    )
    app.state.runtime = runtime

    # CORS 配置
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 监控中间件
    app.add_middleware(MonitoringMiddleware)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return JSONResponse(status_code=exc.status_code or 500, content=exc.to_dict())

    _register_routes(app)
    return app


def get_runtime(request: Request) -> AssistantRuntime:
    runtime = request.app.state.runtime
    if runtime is None:
        raise HTTPException(status_code=503, detail="服务尚未就绪")
    return runtime


def _register_routes(app: FastAPI):

    # ==================== 多轮对话 API ====================

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(request: ChatRequest, runtime: AssistantRuntime = Depends(get_runtime)):
        """多轮对话接口

        reject 策略下同一会话上一条消息仍在处理时返回 409。
        """
        session_id = request.session_id or str(uuid.uuid4())[:8]
        result = await runtime.orchestrator.post_turn(session_id, request.message)
        return result.to_dict()

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str, runtime: AssistantRuntime = Depends(get_runtime)):
        """获取会话快照"""
        snapshot = runtime.sessions.snapshot(session_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"会话不存在: {session_id}")
        return snapshot

    @app.delete("/api/sessions/{session_id}")
    async def end_session(session_id: str, runtime: AssistantRuntime = Depends(get_runtime)):
        """结束会话"""
        if not runtime.sessions.end_session(session_id):
            raise HTTPException(status_code=404, detail=f"会话不存在: {session_id}")
        return {"session_id": session_id, "ended": True}

    # ==================== 菜单和工作流 API ====================

    @app.get("/api/menu")
    async def get_menu(runtime: AssistantRuntime = Depends(get_runtime)):
        """获取菜单"""
        catalog = runtime.catalog
        return {
            "categories": catalog.categories(),
            "products": [p.to_dict() for p in catalog.list_products()]
        }

    @app.get("/api/workflow/graph")
    async def get_workflow_graph(runtime: AssistantRuntime = Depends(get_runtime)):
        """获取 LangGraph 轮次图"""
        return {"mermaid": runtime.orchestrator.get_graph_visualization()}

    # ==================== 健康检查 ====================

    @app.get("/health")
    async def health_check(runtime: AssistantRuntime = Depends(get_runtime)):
        """系统健康检查"""
        report = await runtime.health.check_all()
        status_code = 503 if report.status == HealthStatus.UNHEALTHY else 200
        return JSONResponse(status_code=status_code, content=report.to_dict())

    @app.get("/api/metrics")
    async def get_metrics():
        """获取性能指标"""
        return get_metrics_collector().get_all_stats(window_seconds=300)


app = create_app()


# ==================== 启动服务 ====================

def run(reload: bool = False):
    """运行服务器"""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.logging.level, structured=settings.logging.format == "structured")

    if reload:
        uvicorn.run(
            "app.main:app",
            host=settings.server.host,
            port=settings.server.port,
            reload=True
        )
    else:
        uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="CaféMind 点单助手")
    parser.add_argument("--reload", "-r", action="store_true", help="启用自动重载")
    args = parser.parse_args()
    run(reload=args.reload)
