from __future__ import annotations

import os

_CYRILLIC = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "yo", "ж": "zh", "з": "z",
    "и": "i", "й": "y", "к": "k", "л": "l", "м": "m", "н": "n", "о": "o", "п": "p", "р": "r",
    "с": "s", "т": "t", "у": "u", "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh",
    "щ": "shch", "ь": "", "ы": "y", "ъ": "", "э": "e", "ю": "yu", "я": "ya",
}


def transliterate(text: str) -> str:
    out = []
    for ch in text:
        low = ch.lower()
        if low in _CYRILLIC:
            rep = _CYRILLIC[low]
            out.append(rep.upper() if ch != low else rep)
        else:
            out.append(ch)
    return "".join(out)


def slugify(text: str) -> str:
    """Lowercase ASCII-ish slug: letters and digits, single hyphens between words."""

    s = transliterate(str(text or "").strip()).lower().replace(" ", "-")
    out: list[str] = []
    for ch in s:
        if ch.isalnum():
            out.append(ch)
        elif ch in "-_." and out and out[-1] != "-":
            out.append("-")
    return "".join(out).strip("-")


def slugify_filename(filename: str) -> str:
    """Slugify the stem of `filename`, keep its (lowercased) extension.

    >>> slugify_filename("Мой Файл (1).PNG")
    'moy-fayl-1.png'
    """

    base = os.path.basename(str(filename or "").replace("\\", "/"))
    stem, ext = os.path.splitext(base.strip())
    name = slugify(stem) or "file"
    ext = "".join(ch for ch in ext.lower() if ch.isalnum() or ch == ".")
    return f"{name}{ext}" if ext.strip(".") else name
