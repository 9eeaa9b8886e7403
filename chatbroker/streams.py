"""Two-frame text stream used by the legacy synchronous chat mode."""

import json
from typing import Iterator

FINISH_FRAME = {"finishReason": "stop", "usage": {"promptTokens": 0, "completionTokens": 0}}


def text_frame(content: str) -> str:
    # json.dumps escapes quotes, backslashes and newlines
    return f"0:{json.dumps(content, ensure_ascii=False)}\n"


def finish_frame() -> str:
    return f"d:{json.dumps(FINISH_FRAME, separators=(',', ':'))}\n"


def data_stream(content: str) -> Iterator[str]:
    yield text_frame(content)
    yield finish_frame()
