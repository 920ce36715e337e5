"""
SSE 字节流重组测试
"""

import asyncio

import httpx
import pytest

from gcli2api.services.stream_decoder import SSEStreamDecoder, iter_sse_events


STREAM = (
    'data: {"response": {"candidates": [{"content": {"parts": [{"text": "你好"}]}}]}}\n'
    "\n"
    'data: {"response": {"candidates": [{"content": {"parts": [{"text": "世界"}]}}]}}\n'
    "\n"
    "data: [DONE]\n"
    "\n"
).encode("utf-8")


def decode_all(chunks):
    decoder = SSEStreamDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.finish())
    return events


def test_byte_by_byte_equals_single_chunk():
    whole = decode_all([STREAM])
    split = decode_all([STREAM[i:i + 1] for i in range(len(STREAM))])

    assert len(whole) == 2
    assert split == whole
    assert whole[0]["response"]["candidates"][0]["content"]["parts"][0]["text"] == "你好"


def test_done_marker_stops_decoding():
    decoder = SSEStreamDecoder()
    events = decoder.feed(b'data: {"a": 1}\ndata: [DONE]\ndata: {"b": 2}\n')
    assert events == [{"a": 1}]
    assert decoder.done
    assert decoder.feed(b'data: {"c": 3}\n') == []


def test_json_split_across_lines_is_joined():
    events = decode_all([b'data: {"text": \n', b'"joined"}\n'])
    assert events == [{"text": "joined"}]


def test_broken_fragment_does_not_swallow_next_event():
    events = decode_all([b'data: {"broken": \n', b'data: {"ok": true}\n'])
    assert events == [{"ok": True}]


def test_comments_and_event_fields_are_ignored():
    events = decode_all([b': keepalive\nevent: message\ndata: {"n": 1}\n\n'])
    assert events == [{"n": 1}]


def test_trailing_line_without_newline_is_parsed():
    assert decode_all([b'data: {"n": 1}\ndata: {"n": 2}']) == [{"n": 1}, {"n": 2}]


def test_incomplete_tail_is_dropped():
    assert decode_all([b'data: {"n": 1}\ndata: {"n": ']) == [{"n": 1}]


def test_iter_sse_events_over_async_source():
    async def source():
        for i in range(0, len(STREAM), 7):
            yield STREAM[i:i + 7]

    async def collect():
        return [event async for event in iter_sse_events(source())]

    assert asyncio.run(collect()) == decode_all([STREAM])


def test_iter_sse_events_propagates_transport_errors():
    async def source():
        yield b'data: {"n": 1}\n'
        raise httpx.ReadError("connection reset")

    async def collect():
        seen = []
        async for event in iter_sse_events(source()):
            seen.append(event)
        return seen

    with pytest.raises(httpx.ReadError):
        asyncio.run(collect())
