from __future__ import annotations

from typing import Dict, Tuple

# Russian and Belarusian letters. Soft and hard signs carry no sound of their own.
CYRILLIC_TO_LATIN: Dict[str, str] = {
    "а": "a",
    "б": "b",
    "в": "v",
    "г": "g",
    "д": "d",
    "е": "e",
    "ё": "yo",
    "ж": "zh",
    "з": "z",
    "и": "i",
    "й": "y",
    "к": "k",
    "л": "l",
    "м": "m",
    "н": "n",
    "о": "o",
    "п": "p",
    "р": "r",
    "с": "s",
    "т": "t",
    "у": "u",
    "ф": "f",
    "х": "kh",
    "ц": "ts",
    "ч": "ch",
    "ш": "sh",
    "щ": "shch",
    "ъ": "",
    "ы": "y",
    "ь": "",
    "э": "e",
    "ю": "yu",
    "я": "ya",
    "і": "i",
    "ў": "u",
}

# Longest sequences first so greedy scanning prefers digraphs.
LATIN_SEQUENCES: Tuple[Tuple[str, str], ...] = (
    ("shch", "щ"),
    ("sch", "щ"),
    ("zh", "ж"),
    ("kh", "х"),
    ("ts", "ц"),
    ("tz", "ц"),
    ("ch", "ч"),
    ("sh", "ш"),
    ("yu", "ю"),
    ("ju", "ю"),
    ("ya", "я"),
    ("ja", "я"),
    ("yo", "ё"),
    ("jo", "ё"),
    ("ye", "е"),
    ("ph", "ф"),
)

LATIN_LETTERS: Dict[str, str] = {
    "a": "а",
    "b": "б",
    "c": "к",
    "d": "д",
    "e": "е",
    "f": "ф",
    "g": "г",
    "h": "х",
    "i": "и",
    "j": "й",
    "k": "к",
    "l": "л",
    "m": "м",
    "n": "н",
    "o": "о",
    "p": "п",
    "q": "к",
    "r": "р",
    "s": "с",
    "t": "т",
    "u": "у",
    "v": "в",
    "w": "в",
    "x": "кс",
    "z": "з",
}

LATIN_VOWELS = set("aeiou")


def has_cyrillic(text: str) -> bool:
    return any("Ѐ" <= ch <= "ӿ" for ch in text or "")


def _apply_case(source: str, replacement: str) -> str:
    if replacement and source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def transliterate_to_latin(text: str) -> str:
    if not text:
        return ""
    out = []
    for ch in text:
        mapped = CYRILLIC_TO_LATIN.get(ch.lower())
        out.append(ch if mapped is None else _apply_case(ch, mapped))
    return "".join(out)


def _latin_y(lowered: str, index: int) -> str:
    previous = lowered[index - 1] if index > 0 else ""
    if previous in LATIN_VOWELS or not previous.isalpha():
        return "й"
    return "ы"


def transliterate_to_cyrillic(text: str) -> str:
    """
    Rewrite Latin-script text in Cyrillic letters.

    Multi-letter sequences (``shch``, ``zh``, ``ya`` ...) are consumed greedily.
    A lone ``y`` becomes ``й`` after a vowel or at a word start and ``ы`` after
    a consonant. Characters outside the table pass through unchanged.
    """
    if not text:
        return ""
    lowered = text.lower()
    out = []
    index = 0
    while index < len(text):
        for sequence, replacement in LATIN_SEQUENCES:
            if lowered.startswith(sequence, index):
                out.append(_apply_case(text[index], replacement))
                index += len(sequence)
                break
        else:
            ch = lowered[index]
            if ch == "y":
                mapped = _latin_y(lowered, index)
            else:
                mapped = LATIN_LETTERS.get(ch, text[index])
            out.append(_apply_case(text[index], mapped))
            index += 1
    return "".join(out)
