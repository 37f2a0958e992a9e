"""Heuristics for spotting translation questions and pulling out the answer word.

When the learner asks "how do you say this in Japanese?", the assistant's reply
usually contains the foreign word somewhere in prose. These helpers find it so
it can be shown as the object's overlay label.
"""

from __future__ import annotations

import regex

TRANSLATION_KEYWORDS: tuple[str, ...] = (
    # English
    "in chinese", "in japanese", "in spanish", "in french", "in german",
    "in italian", "in russian", "in arabic", "in hindi", "in portuguese",
    "chinese", "japanese", "spanish", "french", "german", "italian", "russian",
    "translate", "translation", "how do you say", "what is", "say in",
    "how to say", "what's", "whats", "how do i say",
    # Korean
    "중국어로", "일본어로", "스페인어로", "프랑스어로", "독일어로", "이탈리아어로",
    "중국어", "일본어", "스페인어", "프랑스어", "독일어", "이탈리아어",
    "번역", "뭐야", "어떻게", "말해", "어떻게 말해", "뭐라고", "뭐라고 해",
    "어떻게 해", "어떻게 말하지", "뭐라고 하지",
)  # fmt: skip

# Letters, marks, and digits in any script.
_W = r"[\p{L}\p{M}\p{N}]"
_END = r"(?:\s|\.|,|!|\?|$)"

_CANDIDATE_PATTERNS: tuple[regex.Pattern[str], ...] = tuple(
    regex.compile(p)
    for p in (
        r'"([^"]{1,20})"',
        r"'([^']{1,20})'",
        rf"is\s+({_W}{{1,20}}){_END}",
        rf"called\s+({_W}{{1,20}}){_END}",
        rf"({_W}{{2,15}}){_END}",
        rf"：\s*({_W}{{1,20}})",
        rf":\s*({_W}{{1,20}})",
        rf"({_W}{{1,20}})\s*\(",
        rf"\*\*({_W}{{1,20}})\*\*",
    )
)
_LATIN_WORDS = regex.compile(r"[a-zA-Z\s]+")
_LATIN_ALNUM = regex.compile(r"[a-zA-Z0-9]+")
_FALLBACK_SPLIT = regex.compile(r"[\s.,!?;:()\[\]\"'`*]+")

_UNKNOWN = "Unknown"


def is_translation_request(message: str) -> bool:
    """Whether ``message`` looks like a request to translate something."""
    lowered = message.lower()
    return any(keyword in lowered for keyword in TRANSLATION_KEYWORDS)


def extract_translated_word(response: str) -> str:
    """Return the first non-Latin single word found in ``response``, or ``""``."""
    for pattern in _CANDIDATE_PATTERNS:
        for match in pattern.finditer(response):
            word = match.group(1).strip()
            if (
                1 <= len(word) <= 20
                and not _LATIN_WORDS.fullmatch(word)
                and " " not in word
                and word != _UNKNOWN
            ):
                return word

    for token in _FALLBACK_SPLIT.split(response):
        word = token.strip()
        if 1 <= len(word) <= 20 and not _LATIN_ALNUM.fullmatch(word) and word != _UNKNOWN:
            return word
    return ""
