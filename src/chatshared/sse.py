"""Framing for the `data: <json>` Server-Sent-Events streams.

Both directions use the same framing: the server writes one `data:` line per
event followed by a blank line, and ends with a literal `[DONE]` payload. The
upstream model provider speaks the same dialect, so one decoder serves both.
"""

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DONE = "[DONE]"
DATA_PREFIX = "data:"


def encode_data(payload: Any) -> str:
    """Encode a JSON payload as a single SSE data frame."""
    return f"data: {json.dumps(payload)}\n\n"


def encode_done() -> str:
    return f"data: {DONE}\n\n"


def _data_field(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):]
    # A single space after the colon is part of the framing, not the payload
    return data[1:] if data.startswith(" ") else data


async def decode_sse_stream(chunks: AsyncIterable[str]) -> AsyncIterator[Any]:
    """Decode a text chunk stream into JSON payloads, stopping at `[DONE]`.

    Chunks may split lines anywhere; partial lines are buffered until their
    newline arrives. Non-data lines (comments, `event:`, `id:`) are skipped and
    payloads that fail to parse are logged and dropped. The generator holds no
    state beyond one connection, so a new call is needed per stream.
    """
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split("\n")
        for line in lines:
            data = _data_field(line)
            if data is None:
                continue
            if data.strip() == DONE:
                return
            try:
                yield json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed SSE payload: {data[:100]}")

    # Trailing line without a newline
    data = _data_field(buffer)
    if data is not None and data.strip() and data.strip() != DONE:
        try:
            yield json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed SSE payload: {data[:100]}")
