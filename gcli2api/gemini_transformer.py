#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Gemini格式转换器 - OpenAI 请求 ⇄ Code Assist 请求/响应
"""

import time
from typing import Any, List, Optional, Tuple

from fastuuid import uuid4

from .helpers import debug_log, perf_timer
from .message_processor import MessageProcessor
from .schemas import (
    ChatCompletionChoice,
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatMessage,
    Delta,
    GeminiCandidate,
    GeminiGenerationConfig,
    GeminiRequest,
    GeminiResponse,
    OpenAIRequest,
    StreamChoice,
    Usage,
)
from .services.response_parser import ResponseParser
from .thinking_config import get_base_model_name, get_thinking_config


def new_completion_id() -> str:
    return f"chatcmpl-{uuid4()}"


def _stop_sequences(stop: Any) -> Optional[List[str]]:
    if stop is None:
        return None
    if isinstance(stop, str):
        return [stop]
    return [s for s in stop if isinstance(s, str)]


def _convert_role(role: str) -> str:
    return "assistant" if role == "model" else role


class GeminiTransformer:
    """OpenAI ⇄ Gemini 转换"""

    def __init__(self) -> None:
        self.message_processor = MessageProcessor()
        self.response_parser = ResponseParser()

    def transform_request_in(self, request: OpenAIRequest) -> Tuple[str, GeminiRequest]:
        """
        转换 OpenAI 请求

        Args:
            request: 已去掉假流式后缀的请求

        Returns:
            (发给上游的基础模型名, GeminiRequest)
        """
        with perf_timer("transform_request_in"):
            contents = self.message_processor.process_messages(request.messages)

            generation_config = None
            if (
                request.temperature is not None
                or request.top_p is not None
                or request.max_tokens is not None
                or request.stop is not None
            ):
                generation_config = GeminiGenerationConfig(
                    temperature=request.temperature,
                    top_p=request.top_p,
                    max_output_tokens=request.max_tokens,
                    stop_sequences=_stop_sequences(request.stop),
                )

            thinking_config = get_thinking_config(request.model)
            if thinking_config is not None:
                if generation_config is None:
                    generation_config = GeminiGenerationConfig()
                generation_config.thinking_config = thinking_config

        base_model = get_base_model_name(request.model)
        debug_log(
            "请求转换完成",
            model=request.model,
            upstream_model=base_model,
            contents=len(contents),
        )
        return base_model, GeminiRequest(contents=contents, generation_config=generation_config)

    def transform_response_out(self, gemini: GeminiResponse, model: str) -> ChatCompletionResponse:
        choices = []
        for candidate in gemini.candidates:
            content, reasoning = self.response_parser.split_parts(candidate.content.parts)
            choices.append(
                ChatCompletionChoice(
                    index=candidate.index,
                    message=ChatMessage(
                        role=_convert_role(candidate.content.role),
                        content=content,
                        reasoning_content=reasoning or None,
                    ),
                    finish_reason=candidate.finish_reason,
                )
            )

        usage = None
        if gemini.usage_metadata is not None:
            meta = gemini.usage_metadata
            prompt_tokens = meta.prompt_token_count or 0
            completion_tokens = meta.candidates_token_count or 0
            usage = Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=meta.total_token_count or (prompt_tokens + completion_tokens),
            )

        return ChatCompletionResponse(
            id=new_completion_id(),
            created=int(time.time()),
            model=model,
            choices=choices,
            usage=usage,
        )

    def transform_stream_event(self, event: Any, model: str, response_id: str) -> ChatCompletionChunk:
        """单个上游流事件 → chat.completion.chunk；结构不符时得到无 choices 的块"""
        gemini = self.response_parser.parse_response(event)
        return ChatCompletionChunk(
            id=response_id,
            created=int(time.time()),
            model=model,
            choices=[self._stream_choice(candidate) for candidate in gemini.candidates],
        )

    def _stream_choice(self, candidate: GeminiCandidate) -> StreamChoice:
        content, reasoning = self.response_parser.split_parts(candidate.content.parts)
        return StreamChoice(
            index=candidate.index,
            delta=Delta(
                role="assistant" if candidate.index == 0 else None,
                content=content or None,
                reasoning_content=reasoning or None,
            ),
            finish_reason=candidate.finish_reason,
        )
