"""
Tests for the provider stream decoder, SSE encoder and streaming chat client.

Run with: pytest tests/test_sse.py -v -s
"""
import asyncio
import json

import httpx
import pytest

from telecom_rag.llm import ChatClient
from telecom_rag.sse import ChatStreamDecoder, StreamEvent, format_sse


def delta(text: str, finish_reason: str | None = None) -> str:
    chunk = {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n"


def texts(events: list[StreamEvent]) -> list[str]:
    return [e.text for e in events if e.kind == "text"]


def test_decodes_sse_stream():
    decoder = ChatStreamDecoder()
    events = decoder.feed((delta("Bon") + delta("jour") + "data: [DONE]\n\n").encode())

    assert texts(events) == ["Bon", "jour"]
    assert events[-1] == StreamEvent(kind="done")
    assert decoder.close() == []
    print("✓ SSE stream decoded")


def test_reassembles_frames_split_across_reads():
    """Frames and multi-byte characters split at arbitrary byte offsets."""
    raw = (delta("Algérie ") + delta("Télécom") + "data: [DONE]\n\n").encode("utf-8")

    for size in (1, 2, 3, 7, 64):
        decoder = ChatStreamDecoder()
        events = []
        for i in range(0, len(raw), size):
            events.extend(decoder.feed(raw[i:i + size]))
        events.extend(decoder.close())

        assert "".join(texts(events)) == "Algérie Télécom", f"read size {size}"
        assert [e.kind for e in events].count("done") == 1


def test_malformed_chunk_skipped():
    decoder = ChatStreamDecoder()
    events = decoder.feed(b"data: {not json}\n\n" + delta("ok").encode())

    assert texts(events) == ["ok"]
    assert not decoder.finished


def test_finish_reason_stop_emits_single_done():
    decoder = ChatStreamDecoder()
    events = decoder.feed((delta("fin", finish_reason="stop") + "data: [DONE]\n\n").encode())
    events += decoder.close()

    assert texts(events) == ["fin"]
    assert [e.kind for e in events].count("done") == 1


def test_bare_json_lines():
    decoder = ChatStreamDecoder()
    line = json.dumps({"choices": [{"delta": {"content": "brut"}}]})
    events = decoder.feed((line + "\n").encode())

    assert texts(events) == ["brut"]


def test_close_flushes_unterminated_line_and_emits_done():
    decoder = ChatStreamDecoder()
    tail = delta("dernier").rstrip("\n")
    events = decoder.feed(tail.encode())
    assert events == []

    events = decoder.close()
    assert texts(events) == ["dernier"]
    assert events[-1].kind == "done"
    assert decoder.close() == []


def test_ignores_comments_and_other_fields():
    decoder = ChatStreamDecoder()
    events = decoder.feed(b": keep-alive\nevent: message\nid: 4\n\n" + delta("x").encode())

    assert texts(events) == ["x"]


def test_format_sse():
    assert format_sse("hello") == "data: hello\n\n"
    assert format_sse("line 1\nline 2") == "data: line 1\ndata: line 2\n\n"
    assert format_sse('{"a": 1}', event="done") == 'event: done\ndata: {"a": 1}\n\n'


# =============================================================================
# ChatClient.stream_chat over httpx
# =============================================================================

def make_client(handler) -> ChatClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatClient(
        http_client=http_client,
        model="test-model",
        base_url="https://llm.test/v1",
        api_key="sk-test",
    )


async def collect(client: ChatClient) -> list[str]:
    return [chunk async for chunk in client.stream_chat([{"role": "user", "content": "salut"}])]


def test_stream_chat_yields_deltas():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        body = delta("Bonjour") + delta(" !", finish_reason="stop") + "data: [DONE]\n\n"
        return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/event-stream"})

    chunks = asyncio.run(collect(make_client(handler)))

    assert chunks == ["Bonjour", " !"]
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["body"]["stream"] is True
    assert seen["body"]["model"] == "test-model"
    assert seen["auth"] == "Bearer sk-test"


def test_stream_chat_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(collect(make_client(handler)))
