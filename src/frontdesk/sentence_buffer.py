"""Accumulates streamed LLM text and yields complete sentences for TTS."""

import re

_SENTENCE_END = re.compile(r"[.!?](?:\s+|$)")


class SentenceBuffer:
    def __init__(
        self,
        min_chunk_size: int = 8,
        max_chunk_size: int = 150,
        break_on_comma: bool = True,
    ):
        # 8 chars lets short replies like "Got it." through on their own
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size
        self.break_on_comma = break_on_comma
        self._buffer = ""

    def add(self, text: str) -> list[str]:
        """Append streamed text and return any sentences that are now complete."""
        self._buffer += text
        sentences = []
        while True:
            boundary = self._find_boundary()
            if boundary < 0:
                break
            sentence = self._buffer[:boundary].strip()
            self._buffer = self._buffer[boundary:].lstrip()
            if sentence:
                sentences.append(sentence)
        return sentences

    def flush(self) -> str | None:
        remaining = self._buffer.strip()
        self._buffer = ""
        return remaining or None

    def clear(self) -> None:
        self._buffer = ""

    def has_content(self) -> bool:
        return bool(self._buffer.strip())

    def peek(self) -> str:
        return self._buffer

    def _find_boundary(self) -> int:
        text = self._buffer
        if len(text) < self.min_chunk_size:
            return -1

        for match in _SENTENCE_END.finditer(text):
            if match.end() >= self.min_chunk_size:
                return match.end()

        if len(text) <= self.max_chunk_size:
            return -1

        # Too long without a sentence end: break at a natural point.
        if self.break_on_comma:
            last_comma = -1
            for match in re.finditer(r", ", text):
                end = match.end()
                if self.min_chunk_size <= end < len(text):
                    last_comma = end
            if last_comma > 0:
                return last_comma

        last_space = text.rfind(" ", 0, self.max_chunk_size + 1)
        if last_space > self.min_chunk_size:
            return last_space + 1

        return self.max_chunk_size


def find_sentence_boundary(text: str, min_length: int = 20) -> int:
    """Index just past the first sentence end, or -1 if there is none yet."""
    if len(text) < min_length:
        return -1
    match = _SENTENCE_END.search(text)
    if match and match.end() >= min_length:
        return match.end()
    return -1
