"""Sanitizing and profanity masking for player-entered text."""

import logging
import re

import config

logger = logging.getLogger(__name__)

# "hell", "damn" and "god" are allowed.
BANNED_WORDS = frozenset({
    "arse", "arsehole", "ass", "asshole", "bastard", "bitch", "bollocks",
    "bullshit", "cock", "crap", "cunt", "dick", "dickhead", "douche",
    "fag", "faggot", "fuck", "fucked", "fucker", "fucking", "motherfucker",
    "nigga", "nigger", "piss", "prick", "pussy", "retard", "shit", "shitty",
    "slut", "twat", "wanker", "whore",
})

_WORD_RE = re.compile(r"[A-Za-z]+")


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters, collapse whitespace."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return " ".join(text.split())


def contains_banned_word(text: str) -> bool:
    return any(word.lower() in BANNED_WORDS for word in _WORD_RE.findall(text))


def mask_profanity(text: str) -> str:
    """Replace every banned word with asterisks of the same length."""
    def _mask(match: re.Match) -> str:
        word = match.group(0)
        return "*" * len(word) if word.lower() in BANNED_WORDS else word
    return _WORD_RE.sub(_mask, text)


def _clean(raw: str, limit: int, what: str) -> str:
    text = _sanitize_text(raw)[:limit].strip()
    if contains_banned_word(text):
        logger.info("Masked profanity in %s", what)
        text = mask_profanity(text)
    return text


def clean_name(raw: str) -> str:
    return _clean(raw, config.MAX_NAME_LENGTH, "player name")


def clean_custom_text(raw: str) -> str:
    return _clean(raw, config.MAX_CUSTOM_TEXT_LENGTH, "custom card text")
