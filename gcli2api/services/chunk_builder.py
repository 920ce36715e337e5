#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
响应块构建器模块 - 封装所有 SSE 流式响应块构建逻辑
"""

import time
from typing import Any, Dict, Optional

import orjson
from pydantic import BaseModel

from ..config import HEALTH_CHECK_REPLY
from ..errors import error_payload
from ..schemas import ChatCompletionChunk, Delta, StreamChoice


DONE_FRAME = "data: [DONE]\n\n"


class ChunkBuilder:
    """响应块构建器类，封装所有 SSE 块构建逻辑"""

    def format_sse(self, payload: Any) -> str:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_none=True)
        return f"data: {orjson.dumps(payload).decode('utf-8')}\n\n"

    def done_frame(self) -> str:
        return DONE_FRAME

    def build_heartbeat_chunk(self, response_id: str, model: str) -> str:
        """假流式的首个块：role + 空内容，让客户端尽快收到响应头"""
        chunk = ChatCompletionChunk(
            id=response_id,
            created=int(time.time()),
            model=model,
            choices=[StreamChoice(index=0, delta=Delta(role="assistant", content=""))],
        )
        return self.format_sse(chunk)

    def build_content_chunk(
            self,
            response_id: str,
            model: str,
            content: str,
            reasoning_content: Optional[str] = None,
            finish_reason: Optional[str] = None,
    ) -> str:
        """构建正文内容 chunk（可同时携带 reasoning_content），role 只在心跳块中发送"""
        chunk = ChatCompletionChunk(
            id=response_id,
            created=int(time.time()),
            model=model,
            choices=[
                StreamChoice(
                    index=0,
                    delta=Delta(
                        content=content,
                        reasoning_content=reasoning_content or None,
                    ),
                    finish_reason=finish_reason,
                )
            ],
        )
        return self.format_sse(chunk)

    def build_error_frame(self, message: str, error_type: str = "api_error", code: int = 500) -> str:
        return self.format_sse(error_payload(message, error_type, code))

    def build_health_check_payload(self) -> Dict[str, Any]:
        return {"choices": [{"delta": {"role": "assistant", "content": HEALTH_CHECK_REPLY}}]}


chunk_builder = ChunkBuilder()
