"""Supported language identifiers"""

from enum import Enum


class Language(str, Enum):
    """Supported programming languages"""
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    C = "c"
    CPP = "cpp"
    JAVA = "java"
    CSHARP = "csharp"


LANGUAGE_ALIASES = {
    "py": Language.PYTHON,
    "python3": Language.PYTHON,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "nodejs": Language.JAVASCRIPT,
    "c++": Language.CPP,
    "cxx": Language.CPP,
    "cs": Language.CSHARP,
    "c#": Language.CSHARP,
}


def parse_language(value: str) -> Language:
    """
    Map a client-supplied language id onto a Language.

    Raises:
        ValueError: If the id names no supported language.
    """
    key = str(value or "").strip().lower()
    if key in LANGUAGE_ALIASES:
        return LANGUAGE_ALIASES[key]
    return Language(key)
