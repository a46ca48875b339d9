from __future__ import annotations

from enum import Enum


class PreferredLanguage(str, Enum):
    EN = "en"
    ES = "es"


def normalize_language(value: str | PreferredLanguage | None) -> PreferredLanguage | None:
    if value is None:
        return None
    if isinstance(value, PreferredLanguage):
        return value
    cleaned = str(value).strip().lower()
    if not cleaned:
        return None
    aliases = {
        "english": PreferredLanguage.EN,
        "en-us": PreferredLanguage.EN,
        "en_us": PreferredLanguage.EN,
        "spanish": PreferredLanguage.ES,
        "espanol": PreferredLanguage.ES,
        "español": PreferredLanguage.ES,
        "es-us": PreferredLanguage.ES,
        "es-mx": PreferredLanguage.ES,
        "es_mx": PreferredLanguage.ES,
    }
    if cleaned in aliases:
        return aliases[cleaned]
    member = PreferredLanguage._value2member_map_.get(cleaned)
    if member is not None:
        return member
    raise ValueError("language must be 'en' or 'es'")
