from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator


class FrameSplitter:
    """
    Streaming splitter for newline-terminated UTF-8 text frames.

    Chunks may cut a frame anywhere, including inside a multi-byte character;
    bytes are buffered until the terminating newline arrives. Blank frames are
    dropped and undecodable ones are counted and skipped.
    """

    def __init__(self, max_frame_bytes: int = 1024):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()
        self._stats: Dict[str, int] = {"frames": 0, "empty": 0, "decode_errors": 0, "overflows": 0}
        self._log = logging.getLogger(__name__)

    def feed(self, chunk: bytes) -> Iterator[str]:
        if not chunk:
            return
        self._buffer.extend(chunk)
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                if len(self._buffer) > self.max_frame_bytes:
                    self._stats["overflows"] += 1
                    self._log.debug("Discarding %d bytes without frame terminator", len(self._buffer))
                    self._buffer.clear()
                break
            raw = bytes(self._buffer[:end])
            del self._buffer[: end + 1]
            frame = self._decode(raw)
            if frame is not None:
                yield frame

    def iter_frames(self, chunks: Iterable[bytes]) -> Iterator[str]:
        for chunk in chunks:
            yield from self.feed(chunk)

    def iter_lines(self, lines: Iterable[str]) -> Iterator[str]:
        """Frames from an already line-split text source such as a file or stdin."""
        for line in lines:
            frame = line.strip()
            if not frame:
                self._stats["empty"] += 1
                continue
            self._stats["frames"] += 1
            yield frame

    def _decode(self, raw: bytes) -> str | None:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            self._stats["decode_errors"] += 1
            self._log.debug("Dropping frame with invalid UTF-8: %r", raw)
            return None
        frame = text.strip()
        if not frame:
            self._stats["empty"] += 1
            return None
        self._stats["frames"] += 1
        return frame

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer.clear()
