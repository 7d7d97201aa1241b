from __future__ import annotations

import re

MAX_HASHTAGS = 30

COMMON_HASHTAGS = [
    "#instagood",
    "#photooftheday",
    "#beautiful",
    "#happy",
    "#love",
    "#instadaily",
    "#followme",
    "#trending",
    "#viral",
    "#explore",
]

HASHTAG_RE = re.compile(r"#\w+", re.ASCII)
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def generate_hashtags(caption: str) -> list[str]:
    existing = HASHTAG_RE.findall(caption or "")
    words = (caption or "").lower().split()
    suggested = []
    for word in [w for w in words if len(w) > 3 and not w.startswith("#")][:5]:
        cleaned = NON_ALNUM_RE.sub("", word)
        if cleaned:
            suggested.append(f"#{cleaned}")
    return list(dict.fromkeys(existing + suggested + COMMON_HASHTAGS))[:MAX_HASHTAGS]


def normalize_custom_hashtag(text: str) -> str | None:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", text or "")
    if not cleaned:
        return None
    return f"#{cleaned}"


def append_hashtags(caption: str, hashtags: list[str]) -> str:
    if not hashtags:
        return caption
    return f"{caption}\n\n{' '.join(hashtags)}"


def split_keywords(keywords: str) -> list[str]:
    return [k.strip() for k in (keywords or "").split(",") if k.strip()]


def keywords_to_hashtags(keywords: str) -> str:
    return " ".join(f"#{k}" for k in split_keywords(keywords))
