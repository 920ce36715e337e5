#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Main application entry point - OpenAI-compatible gateway for Gemini Code Assist
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gcli2api.config import settings, SERVICE_NAME, SERVICE_VERSION
from gcli2api.credential_manager import CredentialManager
from gcli2api.errors import GatewayError
from gcli2api.helpers import info_log
from gcli2api.openai_api import router as openai_router, debug_router
from gcli2api.services.network_manager import NetworkManager
from gcli2api.services.openai_service import ChatCompletionService


def create_app(service: Optional[ChatCompletionService] = None, debug_api: Optional[bool] = None) -> FastAPI:
    """构建应用；测试时可传入自定义 service（例如使用 MockTransport 的 NetworkManager）"""
    if service is None:
        service = ChatCompletionService(CredentialManager(), NetworkManager())
    if debug_api is None:
        debug_api = settings.DEBUG_API

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        info_log("[STARTUP] 服务启动", service=SERVICE_NAME, version=SERVICE_VERSION, bind=settings.BIND_ADDRESS)
        await service.initialize()
        try:
            yield
        finally:
            await service.close()
            info_log("[SHUTDOWN] 服务已停止")

    app = FastAPI(
        title="gcli2api",
        description="OpenAI-compatible API server for Gemini Code Assist",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.chat_service = service

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    # Include API router
    app.include_router(openai_router)
    if debug_api:
        info_log("[STARTUP] 已启用凭证调试接口")
        app.include_router(debug_router)

    @app.options("/")
    async def handle_options():
        """Handle OPTIONS requests"""
        return Response(status_code=200)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "gcli2api - OpenAI Compatible API Server",
            "version": SERVICE_VERSION,
            "endpoints": ["/v1/models", "/v1/chat/completions", "/health"],
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": int(time.time()),
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # 凭证轮换状态保存在进程内，只能单 worker 运行
    uvicorn.run(
        "main:app",
        host=settings.LISTEN_HOST,
        port=settings.LISTEN_PORT,
        workers=1,
        http="httptools",
        reload=False,
        log_level="info",
    )
