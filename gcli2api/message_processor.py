#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
消息处理器模块 - 把 OpenAI 消息转换为 Gemini contents
"""

from typing import List, Union

from .helpers import debug_log
from .image_handler import image_url_to_part, split_markdown_images
from .schemas import ContentPart, GeminiContent, GeminiPart, Message


# Gemini 只有 user / model 两种角色
_ROLE_MAP = {
    "system": "user",
    "assistant": "model",
}


class MessageProcessor:
    """
    消息处理器类

    封装所有消息处理逻辑，包括：
    - 角色映射（system → user，assistant → model）
    - markdown 图片拆分为 inlineData
    - 多模态数组内容转换
    """

    def convert_role(self, role: str) -> str:
        return _ROLE_MAP.get(role, role)

    def content_to_parts(self, content: Union[str, List[ContentPart], None]) -> List[GeminiPart]:
        """
        转换单条消息的内容

        Args:
            content: 字符串或 OpenAI 多模态数组

        Returns:
            Gemini parts 列表
        """
        if content is None:
            return []

        if isinstance(content, str):
            return split_markdown_images(content)

        parts: List[GeminiPart] = []
        for idx, item in enumerate(content):
            if item.text is not None and item.text.strip():
                parts.extend(split_markdown_images(item.text))

            if item.image_url is not None and item.image_url.url:
                image_part = image_url_to_part(item.image_url.url)
                if image_part is not None:
                    parts.append(image_part)
                else:
                    # 远程图片不下载，直接丢弃
                    debug_log(f"内容[{idx}]: 跳过非data URL图片")
        return parts

    def process_messages(self, messages: List[Message]) -> List[GeminiContent]:
        contents = []
        for msg in messages:
            contents.append(
                GeminiContent(
                    role=self.convert_role(msg.role),
                    parts=self.content_to_parts(msg.content),
                )
            )
        return contents
