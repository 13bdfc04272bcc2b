"""Server-sent-event decoding for streamed chat completions.

Turns the raw byte stream of a ``stream: true`` response into parsed JSON
chunks.  Malformed lines are dropped rather than treated as fatal; a local
server occasionally emits keep-alive comments or truncated events and the
rest of the stream is still usable.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncGenerator, AsyncIterable

from turnloop.types import STREAM_END, StreamChunk

_logger = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_DONE_TOKEN = "[DONE]"


def parse_stream_line(raw_line: str) -> StreamChunk | None:
    """Decode one SSE line.

    Returns ``STREAM_END`` for ``data: [DONE]``, the parsed payload for any
    other well-formed ``data:`` line, and ``None`` for everything else.
    """
    line = raw_line.strip()
    if not line.startswith(_DATA_PREFIX):
        return None
    payload = line[len(_DATA_PREFIX):].strip()
    if payload == _DONE_TOKEN:
        return STREAM_END
    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError:
        _logger.debug("Dropping malformed stream line: %.120s", payload)
        return None
    return data


async def decode_stream(
    byte_chunks: AsyncIterable[bytes],
) -> AsyncGenerator[StreamChunk, None]:
    """Yield chunks decoded from an async iterable of raw bytes.

    Reads may split lines (and multibyte characters) anywhere; only
    complete lines are parsed.  Production stops after ``STREAM_END``.
    Whatever is left in the buffer when the bytes run out is parsed with
    the same rule.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for raw in byte_chunks:
        buffer += decoder.decode(raw)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            chunk = parse_stream_line(line)
            if chunk is None:
                continue
            yield chunk
            if chunk is STREAM_END:
                return

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        chunk = parse_stream_line(buffer)
        if chunk is not None:
            yield chunk
