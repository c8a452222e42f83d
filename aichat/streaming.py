"""Reassemble a chat-completions reply from a server-sent-events stream.

Everything here is pure: the functions operate on literal lines or byte
chunks and never touch the network, so they can be exercised directly::

    >>> assemble(['data: {"choices":[{"delta":{"content":"Hi"}}]}', "data: [DONE]"])
    'Hi'
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Iterable, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_PAYLOAD = "[DONE]"

Line = Union[str, bytes]


class _Done:
    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()


def parse_line(line: Line) -> Union[str, _Done, None]:
    """Return the delta text carried by ``line``, :data:`DONE`, or ``None``."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX) :]
    if payload == DONE_PAYLOAD:
        return DONE

    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON stream chunk: %s", payload[:200])
        return None
    return _extract_delta(event)


def _extract_delta(event: object) -> Optional[str]:
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def iter_deltas(lines: Iterable[Line]) -> Iterator[str]:
    """Yield delta texts in arrival order until the stream ends or ``[DONE]``."""
    for line in lines:
        delta = parse_line(line)
        if delta is DONE:
            return
        if delta:
            yield delta


def assemble(lines: Iterable[Line]) -> str:
    """Concatenate every delta of the stream into the complete reply."""
    return "".join(iter_deltas(lines))


class LineSplitter:
    """Incrementally cut byte chunks into decoded text lines.

    A multi-byte character or a line may straddle chunk boundaries.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def flush(self) -> List[str]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return [tail] if tail else []


def split_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Turn arbitrarily sized byte chunks into lines; the partial tail comes last."""
    splitter = LineSplitter()
    for chunk in chunks:
        yield from splitter.feed(chunk)
    yield from splitter.flush()
