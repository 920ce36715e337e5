#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
响应解析器模块 - 上游响应包装层识别与 parts 拆分

Code Assist 返回 {"response": {...GenerateContentResponse...}}，
直连 Gemini API 时直接返回 GenerateContentResponse，两种形态在这里统一。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from ..helpers import debug_log, warn_log
from ..image_handler import inline_data_to_markdown
from ..schemas import GeminiPart, GeminiResponse


class PayloadShape(str, Enum):
    WRAPPED = "wrapped"
    DIRECT = "direct"


@dataclass(frozen=True)
class GeminiEnvelope:
    shape: PayloadShape
    body: Dict[str, Any]


class ResponseParser:
    """响应解析器类，封装所有响应内容解析逻辑"""

    def classify_payload(self, payload: Any) -> GeminiEnvelope:
        if not isinstance(payload, dict):
            return GeminiEnvelope(PayloadShape.DIRECT, {})

        inner = payload.get("response")
        if isinstance(inner, dict) and "candidates" not in payload:
            return GeminiEnvelope(PayloadShape.WRAPPED, inner)
        return GeminiEnvelope(PayloadShape.DIRECT, payload)

    def normalize_payload(self, payload: Any) -> Dict[str, Any]:
        """去掉包装层，返回 GenerateContentResponse 结构"""
        envelope = self.classify_payload(payload)
        if envelope.shape is PayloadShape.WRAPPED:
            debug_log("[PARSER] 解开 response 包装层")
        return envelope.body

    def parse_response(self, payload: Any) -> GeminiResponse:
        """解析为 GeminiResponse，结构不符时返回空响应（无 candidates）"""
        body = self.normalize_payload(payload)
        try:
            return GeminiResponse.model_validate(body)
        except ValidationError as e:
            warn_log("[PARSER] 上游响应结构不符", error=str(e))
            return GeminiResponse()

    def split_parts(self, parts: List[GeminiPart]) -> Tuple[str, str]:
        """拆分 parts，返回 (content, reasoning_content)

        - thought 部分按顺序直接拼接为 reasoning_content
        - 其余文本与图片（转为 markdown）以空行分隔拼接为 content
        """
        content_parts: List[str] = []
        reasoning_content = ""

        for part in parts:
            if part.text is not None:
                if not part.text:
                    continue
                if part.is_thought:
                    reasoning_content += part.text
                else:
                    content_parts.append(part.text)
            elif part.inline_data is not None and part.inline_data.data:
                content_parts.append(
                    inline_data_to_markdown(part.inline_data.mime_type, part.inline_data.data)
                )

        return "\n\n".join(content_parts), reasoning_content
