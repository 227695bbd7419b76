"""
Supported languages and script-based language detection.
"""

from __future__ import annotations

import re

# name → ISO 639-1 code
LANGUAGE_CODES: dict[str, str] = {
    "english": "en",
    "hindi": "hi",
    "tamil": "ta",
    "telugu": "te",
    "bengali": "bn",
    "marathi": "mr",
    "gujarati": "gu",
    "kannada": "kn",
    "malayalam": "ml",
    "punjabi": "pa",
}

DEFAULT_LANGUAGE = "english"

# (language, unicode block); Devanagari is shared by Hindi and Marathi;
# we default to Hindi.
_SCRIPT_RANGES: list[tuple[str, re.Pattern[str]]] = [
    ("hindi", re.compile(r"[ऀ-ॿ]")),
    ("bengali", re.compile(r"[ঀ-৿]")),
    ("punjabi", re.compile(r"[਀-੿]")),
    ("gujarati", re.compile(r"[઀-૿]")),
    ("tamil", re.compile(r"[஀-௿]")),
    ("telugu", re.compile(r"[ఀ-౿]")),
    ("kannada", re.compile(r"[ಀ-೿]")),
    ("malayalam", re.compile(r"[ഀ-ൿ]")),
]


def detect_language(text: str) -> str:
    """Guess the language from the script used; Latin text is English."""
    for language, pattern in _SCRIPT_RANGES:
        if pattern.search(text or ""):
            return language
    return DEFAULT_LANGUAGE


def is_supported(language: str) -> bool:
    return (language or "").lower() in LANGUAGE_CODES


def language_code(language: str) -> str:
    return LANGUAGE_CODES.get((language or "").lower(), "en")
