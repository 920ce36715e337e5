#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Chat completion 编排 - 凭证选择、失败切换重试、流式与假流式输出
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import httpx

from ..credential_manager import CredentialManager, CredentialRecord
from ..errors import GatewayError, MissingProjectError, UpstreamError
from ..gemini_transformer import GeminiTransformer, new_completion_id
from ..helpers import (
    bind_request_context,
    debug_log,
    error_log,
    info_log,
    request_stage_log,
    reset_request_context,
    warn_log,
)
from ..oauth import TokenRefresher
from ..schemas import OpenAIRequest
from .chunk_builder import ChunkBuilder
from .gemini_client import GeminiClient
from .network_manager import NetworkManager
from .stream_decoder import iter_sse_events


T = TypeVar("T")

# 按凭证重试的错误：换一个凭证可能成功
RETRYABLE_ERRORS = (UpstreamError, MissingProjectError, httpx.HTTPError)


def _status_of(exc: BaseException) -> int:
    if isinstance(exc, GatewayError):
        return exc.status_code
    return 500


class ChatCompletionService:
    """Encapsulates the chat completion pipeline (credential rotation, upstream calls, SSE relay)."""

    def __init__(
            self,
            credential_manager: CredentialManager,
            network: Optional[NetworkManager] = None,
            gemini_client: Optional[GeminiClient] = None,
            token_refresher: Optional[TokenRefresher] = None,
    ) -> None:
        self.credential_manager = credential_manager
        self.network = network or NetworkManager()
        self.gemini_client = gemini_client or GeminiClient(self.network)
        self.token_refresher = token_refresher or TokenRefresher(self.network)
        self.transformer = GeminiTransformer()
        self.chunk_builder = ChunkBuilder()

    async def initialize(self) -> None:
        await self.credential_manager.initialize()
        record = await self.credential_manager.get_current_credentials()
        if record is None:
            warn_log("[CREDS] 启动时没有可用的凭证，请向凭证目录添加 *.json 文件")
        else:
            info_log("[CREDS] 启动凭证检查通过", credential=record.credential_id)

    async def close(self) -> None:
        await self.network.cleanup_clients()

    # ------------------------------------------------------------------
    # 重试循环
    # ------------------------------------------------------------------

    async def _prepare_credential(self, record: CredentialRecord) -> CredentialRecord:
        record = await self.token_refresher.refresh_if_needed(record)
        if not record.project_id:
            raise MissingProjectError(f"Credential {record.credential_id} has no project_id")
        await self.gemini_client.ensure_onboarded(record)
        return record

    async def run_with_retry(
            self,
            operation: Callable[[CredentialRecord], Awaitable[T]],
    ) -> Tuple[T, CredentialRecord]:
        """
        依次尝试凭证直到成功或达到 max_retries

        Returns:
            (operation 的结果, 成功使用的凭证)
        """
        max_attempts = self.credential_manager.max_retries
        attempts = 0
        last_error: Optional[BaseException] = None

        while attempts < max_attempts:
            # 只在第一次尝试时计入轮换计数
            record = await self.credential_manager.acquire(count_call=attempts == 0)
            bind_request_context(credential=record.credential_id)
            try:
                record = await self._prepare_credential(record)
                result = await operation(record)
                return result, record
            except RETRYABLE_ERRORS as e:
                status_code = _status_of(e)
                attempts += 1
                last_error = e
                warn_log(
                    "[RETRY] 凭证请求失败，切换凭证",
                    credential=record.credential_id,
                    status_code=status_code,
                    attempt=attempts,
                    max_attempts=max_attempts,
                    error=str(e),
                )
                await self.credential_manager.record_error(record.file_name, status_code)
                await self.credential_manager.failover_from(record.file_name)

        error_log("[RETRY] 所有重试均失败", attempts=attempts, error=str(last_error))
        if isinstance(last_error, GatewayError):
            raise last_error
        raise UpstreamError(f"Request failed after {attempts} attempts: {last_error}") from last_error

    # ------------------------------------------------------------------
    # 非流式
    # ------------------------------------------------------------------

    async def chat_completion(self, request: OpenAIRequest) -> Dict[str, Any]:
        upstream_request = request.model_copy(update={"model": request.get_real_model()})
        base_model, gemini_request = self.transformer.transform_request_in(upstream_request)

        gemini_response, record = await self.run_with_retry(
            lambda rec: self.gemini_client.generate_content(rec, base_model, gemini_request)
        )
        await self.credential_manager.record_success(record.file_name)

        response = self.transformer.transform_response_out(gemini_response, request.model)
        request_stage_log("non_stream_ready", "非流式结果已生成", choices=len(response.choices))
        return response.model_dump(exclude_none=True)

    # ------------------------------------------------------------------
    # 流式
    # ------------------------------------------------------------------

    async def open_chat_stream(self, request: OpenAIRequest) -> AsyncIterator[str]:
        """
        在返回 StreamingResponse 之前完成凭证选择与上游连接

        连接阶段的错误直接抛出（客户端拿到 JSON 错误和状态码），
        连接成功后返回逐块输出 SSE 的生成器。
        """
        upstream_request = request.model_copy(update={"model": request.get_real_model()})
        base_model, gemini_request = self.transformer.transform_request_in(upstream_request)

        response, record = await self.run_with_retry(
            lambda rec: self.gemini_client.open_stream(rec, base_model, gemini_request)
        )
        request_stage_log("upstream_stream_ready", "上游流式连接已建立", credential=record.credential_id)
        return self._relay_stream(response, record, request.model)

    async def _relay_stream(
            self,
            response: httpx.Response,
            record: CredentialRecord,
            model: str,
    ) -> AsyncIterator[str]:
        response_id = new_completion_id()
        chunk_count = 0
        try:
            try:
                async for event in iter_sse_events(response.aiter_bytes()):
                    chunk = self.transformer.transform_stream_event(event, model, response_id)
                    chunk_count += 1
                    yield self.chunk_builder.format_sse(chunk)
            except Exception as e:
                error_log("[STREAM] 流式传输中断", credential=record.credential_id, error=str(e))
                yield self.chunk_builder.build_error_frame(f"Stream error: {e}")
                yield self.chunk_builder.done_frame()
                await self.credential_manager.record_error(record.file_name, 500)
                return

            yield self.chunk_builder.done_frame()
        finally:
            await response.aclose()
            reset_request_context("credential")

        debug_log("[STREAM] 流式响应完成", chunks=chunk_count)
        await self.credential_manager.record_success(record.file_name)

    async def fake_stream_chat_completion(self, request: OpenAIRequest) -> AsyncIterator[str]:
        """假流式：先发心跳块，再用非流式结果拼出一个完整的内容块"""
        response_id = new_completion_id()
        yield self.chunk_builder.build_heartbeat_chunk(response_id, request.model)

        try:
            non_stream_request = request.model_copy(update={"stream": False})
            result = await self.chat_completion(non_stream_request)
            message = result["choices"][0]["message"] if result.get("choices") else {}
            yield self.chunk_builder.build_content_chunk(
                response_id,
                request.model,
                message.get("content", ""),
                reasoning_content=message.get("reasoning_content"),
                finish_reason="stop",
            )
        except GatewayError as e:
            error_log("[FAKE_STREAM] 假流式请求失败", error=e.message)
            yield self.chunk_builder.build_error_frame(e.message, e.error_type, e.status_code)
        except Exception as e:
            error_log("[FAKE_STREAM] 假流式请求异常", error=str(e))
            yield self.chunk_builder.build_error_frame(f"Internal server error: {e}")

        yield self.chunk_builder.done_frame()
