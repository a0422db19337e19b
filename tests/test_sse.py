"""Tests for the incremental SSE decoder."""

from __future__ import annotations

from sixerr_plugin.sse import SSEDecoder


def test_single_event() -> None:
    decoder = SSEDecoder()
    assert decoder.feed('data: {"a": 1}\n\n') == [{"a": 1}]
    assert decoder.pending == ""


def test_event_split_across_chunks() -> None:
    decoder = SSEDecoder()
    assert decoder.feed('data: {"a"') == []
    assert decoder.pending == 'data: {"a"'
    assert decoder.feed(': 1}\n') == []
    assert decoder.feed('\ndata: {"b": 2}\n\n') == [{"a": 1}, {"b": 2}]


def test_crlf_and_event_lines() -> None:
    decoder = SSEDecoder()
    chunk = 'event: response.created\r\ndata: {"type": "response.created"}\r\n\r\n'
    assert decoder.feed(chunk) == [{"type": "response.created"}]


def test_multiline_data_joined() -> None:
    decoder = SSEDecoder()
    assert decoder.feed('data: {"a":\ndata: 1}\n\n') == [{"a": 1}]


def test_done_sentinel_and_garbage_dropped() -> None:
    decoder = SSEDecoder()
    events = decoder.feed('data: not-json\n\n: comment\n\ndata: {"ok": true}\n\ndata: [DONE]\n\n')
    assert events == [{"ok": True}]


def test_data_without_space() -> None:
    assert SSEDecoder().feed('data:{"x":1}\n\n') == [{"x": 1}]


def test_crlf_pair_split_across_chunks() -> None:
    decoder = SSEDecoder()
    events = decoder.feed('data: {"n": 1}\r\n\r')
    events += decoder.feed('\ndata: {"n": 2}\r\n\r\n')
    assert events == [{"n": 1}, {"n": 2}]
    assert decoder.pending == ""
