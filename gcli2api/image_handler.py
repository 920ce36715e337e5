#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
图像处理模块 - data URI 与 Gemini inlineData 之间的互转
"""

import re
from typing import List, Optional, Tuple

from .helpers import debug_log
from .schemas import GeminiPart


DEFAULT_IMAGE_MIME = "image/png"

# ![alt](url)
_MARKDOWN_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")


def is_data_uri(url: str) -> bool:
    return url.startswith("data:")


def parse_data_uri(url: str) -> Tuple[str, str]:
    """
    解析 data URI

    Args:
        url: data:image/png;base64,iVBORw0KG...

    Returns:
        (mime_type, base64_data)，mime 为空时默认 image/png
    """
    if not is_data_uri(url):
        raise ValueError("不是有效的data URL格式")

    metadata, sep, data = url[len("data:"):].partition(",")
    if not sep:
        raise ValueError("data URL 缺少逗号分隔符")

    mime_type = metadata.split(";")[0] or DEFAULT_IMAGE_MIME
    return mime_type, data


def image_url_to_part(url: str) -> Optional[GeminiPart]:
    """data URI 转 inlineData；远程 URL 不下载，返回 None 由调用方处理"""
    if not is_data_uri(url):
        return None
    try:
        mime_type, data = parse_data_uri(url)
    except ValueError as e:
        debug_log(f"解析data URL失败: {e}")
        return None
    debug_log("解析data URL图像", content_type=mime_type, size=len(data))
    return GeminiPart.from_inline_data(mime_type, data)


def split_markdown_images(text: str) -> List[GeminiPart]:
    """把文本中的 markdown 图片拆成 inlineData 部分，其余文本保留为 text 部分"""
    parts: List[GeminiPart] = []
    last_end = 0

    for match in _MARKDOWN_IMAGE_RE.finditer(text):
        before = text[last_end:match.start()]
        if before.strip():
            parts.append(GeminiPart.from_text(before))

        image_part = image_url_to_part(match.group(2))
        # 非 data URI 保留原始 markdown
        parts.append(image_part or GeminiPart.from_text(match.group(0)))
        last_end = match.end()

    remaining = text[last_end:]
    if remaining.strip():
        parts.append(GeminiPart.from_text(remaining))

    if not parts:
        parts.append(GeminiPart.from_text(text))
    return parts


def inline_data_to_markdown(mime_type: str, data: str) -> str:
    return f"![image](data:{mime_type};base64,{data})"
