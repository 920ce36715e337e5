"""
OpenAI API endpoints
"""

import time
from typing import Optional

import orjson
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import settings, SUPPORTED_MODELS
from .errors import AuthenticationError, GatewayError
from .helpers import (
    bind_request_context,
    debug_log,
    error_log,
    info_log,
    request_stage_log,
    reset_request_context,
)
from .schemas import Model, ModelsResponse, OpenAIRequest
from .services.chunk_builder import chunk_builder
from .services.openai_service import ChatCompletionService


_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def verify_password(authorization: Optional[str] = Header(None)) -> None:
    """/v1/* 共享密码校验：Authorization: Bearer <PASSWORD>"""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("密码错误")
    if authorization[len("Bearer "):] != settings.PASSWORD:
        raise AuthenticationError("密码错误")


def get_chat_service(request: Request) -> ChatCompletionService:
    return request.app.state.chat_service


router = APIRouter(prefix="/v1", dependencies=[Depends(verify_password)])

debug_router = APIRouter(prefix="/v1/credentials", dependencies=[Depends(verify_password)])


@router.get("/models")
async def list_models():
    """List available models"""
    current_time = int(time.time())
    return ModelsResponse(
        data=[Model(id=model_id, created=current_time, owned_by="google") for model_id in SUPPORTED_MODELS]
    )


@router.post("/chat/completions")
async def chat_completions(request: OpenAIRequest, service: ChatCompletionService = Depends(get_chat_service)):
    """处理 chat completion 请求，支持流式、假流式和非流式"""
    request_stage_log(
        "received",
        "收到客户端请求",
        model=request.model,
        stream=request.stream,
        message_count=len(request.messages),
    )
    debug_log("客户端请求体详情", request_body=orjson.dumps(request.model_dump(exclude_none=True)).decode("utf-8"))

    # 探活请求不消耗凭证
    if request.is_health_check():
        info_log("[REQUEST] 探活请求，直接返回")
        return JSONResponse(chunk_builder.build_health_check_payload())

    request.limit_max_tokens()
    request.filter_empty_messages()
    if not request.messages:
        raise GatewayError("messages must not be empty", status_code=400, error_type="invalid_request_error")

    bind_request_context(model=request.model, mode="stream" if request.stream else "non_stream")
    try:
        if request.is_fake_streaming():
            request_stage_log("fake_stream_mode", "使用假流式模式")
            return StreamingResponse(
                service.fake_stream_chat_completion(request),
                media_type="text/event-stream",
                headers=_STREAM_HEADERS,
            )

        if request.stream:
            stream = await service.open_chat_stream(request)
            request_stage_log("stream_ready", "流式响应已交给 FastAPI", media_type="text/event-stream")
            return StreamingResponse(stream, media_type="text/event-stream", headers=_STREAM_HEADERS)

        return await service.chat_completion(request)

    except GatewayError as e:
        error_log("[REQUEST] 请求失败", status_code=e.status_code, error=e.message)
        raise
    except Exception as e:
        error_log("处理请求时发生错误", error=str(e))
        raise GatewayError(f"Internal server error: {e}") from e
    finally:
        reset_request_context("model", "mode", "credential")


@debug_router.get("")
async def credentials_status(service: ChatCompletionService = Depends(get_chat_service)):
    """凭证状态（错误码、禁用标记、当前游标）"""
    return await service.credential_manager.get_credentials_status()


async def _set_disabled(service: ChatCompletionService, file_name: str, disabled: bool):
    updated = await service.credential_manager.set_credential_disabled(file_name, disabled)
    if not updated:
        raise GatewayError(f"Credential {file_name} not found", status_code=404, error_type="invalid_request_error")
    return {"file": file_name, "disabled": disabled}


@debug_router.post("/{file_name}/disable")
async def disable_credential(file_name: str, service: ChatCompletionService = Depends(get_chat_service)):
    return await _set_disabled(service, file_name, True)


@debug_router.post("/{file_name}/enable")
async def enable_credential(file_name: str, service: ChatCompletionService = Depends(get_chat_service)):
    return await _set_disabled(service, file_name, False)
