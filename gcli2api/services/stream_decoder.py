#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
SSE 字节流解码模块 - 把任意切分的上游字节流重组为 JSON 事件
"""

import codecs
from typing import Any, AsyncIterator, List, Optional

import orjson

from ..helpers import debug_log, warn_log


DONE_MARKER = "[DONE]"

# 非 data 字段，直接忽略
_IGNORED_FIELDS = ("event:", "id:", "retry:")


class SSEStreamDecoder:
    """
    增量 SSE 解码器

    - 多字节 UTF-8 字符跨块切分时保持完整
    - 一行 JSON 解析失败时暂存，与下一行拼接后重试
    - 暂存片段后出现新的 data: 行时丢弃片段，避免吞掉后续事件
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending: Optional[str] = None
        self.done = False

    def feed(self, chunk: bytes) -> List[Any]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)

        events: List[Any] = []
        while not self.done and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._process_line(line, events)
        return events

    def finish(self) -> List[Any]:
        """上游结束：处理缓冲区剩余内容，残留的不完整片段记录后丢弃"""
        events: List[Any] = []
        if self.done:
            return events

        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            line, self._buffer = self._buffer, ""
            self._process_line(line, events)

        if self._pending is not None:
            warn_log("[SSE] 流结束时仍有未完成的数据，已丢弃", fragment=self._pending[:200])
            self._pending = None
        return events

    def _process_line(self, raw_line: str, events: List[Any]) -> None:
        line = raw_line.strip()
        if not line or line.startswith(":"):
            return

        is_data = line.startswith("data:")
        if not is_data and self._pending is None and line.startswith(_IGNORED_FIELDS):
            return

        payload = line[len("data:"):].strip() if is_data else line

        if self._pending is not None:
            if is_data:
                warn_log("[SSE] 丢弃无法解析的数据片段", fragment=self._pending[:200])
            else:
                payload = self._pending + "\n" + payload
            self._pending = None

        if payload == DONE_MARKER:
            debug_log("[SSE] 收到结束标记")
            self.done = True
            return

        try:
            events.append(orjson.loads(payload))
        except orjson.JSONDecodeError:
            self._pending = payload


async def iter_sse_events(chunks: AsyncIterator[bytes]) -> AsyncIterator[Any]:
    """按到达顺序产出事件；传输层异常直接向上抛出"""
    decoder = SSEStreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.finish():
        yield event
