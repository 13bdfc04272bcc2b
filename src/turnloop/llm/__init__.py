"""LLM transport and stream processing for turnloop."""

from turnloop.llm.client import AsyncLLMClient, LLMRequestError
from turnloop.llm.response_parser import ChannelMultiplexer, ToolCallAccumulator
from turnloop.llm.stream import decode_stream, parse_stream_line

__all__ = [
    "AsyncLLMClient",
    "ChannelMultiplexer",
    "LLMRequestError",
    "ToolCallAccumulator",
    "decode_stream",
    "parse_stream_line",
]
