from __future__ import annotations

import os
from pathlib import Path

from openai import OpenAI

OPENAI_TRANSCRIBE_MODEL = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")


def transcribe_segment(path: str | Path) -> str:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")
    client = OpenAI(api_key=api_key)
    with Path(path).open("rb") as audio:
        response = client.audio.transcriptions.create(model=OPENAI_TRANSCRIBE_MODEL, file=audio)
    return response.text.strip()
