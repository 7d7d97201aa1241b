import re

from crosspost.hashtags import (
    COMMON_HASHTAGS,
    MAX_HASHTAGS,
    append_hashtags,
    generate_hashtags,
    keywords_to_hashtags,
    normalize_custom_hashtag,
    split_keywords,
)
from crosspost.pkce import generate_code_challenge, generate_code_verifier


def test_code_verifier_is_unpadded_base64url() -> None:
    verifier = generate_code_verifier()
    assert len(verifier) == 43
    assert re.fullmatch(r"[A-Za-z0-9_-]+", verifier)
    assert generate_code_verifier() != verifier


def test_code_challenge_matches_rfc7636_vector() -> None:
    verifier = "dBjftJeZ4CVP-mJ92IZ6wF8ew8Ge3WK-ZtMkjAHKjzM"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_generate_hashtags_keeps_existing_then_words_then_common() -> None:
    tags = generate_hashtags("Sunset at the beach today #travel")
    assert tags[:4] == ["#travel", "#sunset", "#beach", "#today"]
    assert tags[4:] == COMMON_HASHTAGS


def test_generate_hashtags_deduplicates_and_caps() -> None:
    tags = generate_hashtags("love this #love")
    assert tags.count("#love") == 1
    long_caption = " ".join(f"#tag{i}" for i in range(40))
    assert len(generate_hashtags(long_caption)) == MAX_HASHTAGS


def test_generate_hashtags_uses_only_first_five_words() -> None:
    tags = generate_hashtags("alpha bravo charlie delta echos foxtrot")
    assert "#foxtrot" not in tags
    assert "#echos" in tags


def test_normalize_custom_hashtag() -> None:
    assert normalize_custom_hashtag("  my tag! ") == "#mytag"
    assert normalize_custom_hashtag("#already") == "#already"
    assert normalize_custom_hashtag("!!!") is None


def test_append_hashtags() -> None:
    assert append_hashtags("hi", []) == "hi"
    assert append_hashtags("hi", ["#a", "#b"]) == "hi\n\n#a #b"


def test_keywords_helpers() -> None:
    assert split_keywords("cats, dogs ,") == ["cats", "dogs"]
    assert keywords_to_hashtags("cats, dogs ,") == "#cats #dogs"
    assert keywords_to_hashtags("") == ""
