"""Named regular-expression helpers and term/item counting for text fields."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final

from treescore.models import TokenMode

FULL_TERM_PATTERN: Final[re.Pattern[str]] = re.compile(r"^.+\b.+$", re.UNICODE)

DEFAULT_SEPARATOR: Final[str] = " "


def matches(text: str, pattern: str | re.Pattern[str], flags: int = 0) -> bool:
    """Return True when `pattern` is found anywhere in `text`.

    Args:
        text (str): Text to search.
        pattern (str | re.Pattern[str]): Regular expression.
        flags (int): `re` flags; ignored for compiled patterns.

    Returns:
        bool: Whether at least one match exists.

    Examples:
        >>> matches("Hello world", r"world")
        True
    """
    if isinstance(pattern, re.Pattern):
        return pattern.search(text) is not None
    return re.search(pattern, text, flags) is not None


def split_on(text: str, pattern: str | re.Pattern[str], flags: int = 0) -> list[str]:
    """Split `text` on every match of `pattern`.

    Args:
        text (str): Text to split.
        pattern (str | re.Pattern[str]): Separator regular expression.
        flags (int): `re` flags; ignored for compiled patterns.

    Returns:
        list[str]: The pieces between separators.

    Examples:
        >>> split_on("a, b,c", r",\\s*")
        ['a', 'b', 'c']
    """
    if isinstance(pattern, re.Pattern):
        return pattern.split(text)
    return re.split(pattern, text, flags=flags)


def count_matches(text: str, pattern: str | re.Pattern[str], flags: int = 0) -> int:
    """Count the non-overlapping matches of `pattern` in `text`.

    Args:
        text (str): Text to search.
        pattern (str | re.Pattern[str]): Regular expression.
        flags (int): `re` flags; ignored for compiled patterns.

    Returns:
        int: Number of matches.

    Examples:
        >>> count_matches("the cat and the hat", r"\\bthe\\b")
        2
    """
    if isinstance(pattern, re.Pattern):
        return len(pattern.findall(text))
    return len(re.findall(pattern, text, flags))


def is_full_term(term: str, token_mode: TokenMode) -> bool:
    """Return True when `term` is matched against the whole field value.

    Args:
        term (str): Term of a text predicate.
        token_mode (TokenMode): Tokenization mode of the field.

    Returns:
        bool: True for "full_terms_only" fields, and for "all" fields when
            the term spans more than one token.
    """
    if token_mode == "full_terms_only":
        return True
    if token_mode == "all":
        return matches(term, FULL_TERM_PATTERN)
    return False


def term_count(
    text: str,
    forms: Sequence[str],
    *,
    token_mode: TokenMode = "tokens_only",
    case_sensitive: bool = False,
) -> int:
    """Count the occurrences of a term (or any of its forms) in a text value.

    In full-term mode the whole value is compared to the first form and the
    count is 1 or 0. Otherwise the forms are matched as tokens delimited by
    word boundaries or underscores.

    Args:
        text (str): The input value of the text field.
        forms (Sequence[str]): The term followed by its alternative forms.
        token_mode (TokenMode): Tokenization mode of the field.
        case_sensitive (bool): Whether matching respects letter case.

    Returns:
        int: Number of occurrences found.

    Examples:
        >>> term_count("The cat saw another Cat", ["cat", "cats"])
        2
        >>> term_count("Hello World", ["hello world"], token_mode="full_terms_only")
        1
    """
    if not forms:
        return 0
    first_form = forms[0]
    if token_mode == "full_terms_only" or (len(forms) == 1 and is_full_term(first_form, token_mode)):
        if case_sensitive:
            return int(text == first_form)
        return int(text.lower() == first_form.lower())

    flags = re.UNICODE if case_sensitive else re.UNICODE | re.IGNORECASE
    pattern = "|".join(rf"(\b|_){re.escape(form)}(\b|_)" for form in forms)
    return count_matches(text, pattern, flags)


def item_count(
    text: str,
    item: str,
    *,
    separator: str | None = None,
    separator_regexp: str | None = None,
) -> int:
    """Count the occurrences of an item in a delimited items value.

    Args:
        text (str): The input value of the items field.
        item (str): Item to look for.
        separator (str | None): Literal separator. Defaults to a space.
        separator_regexp (str | None): Separator regular expression; takes
            precedence over `separator`.

    Returns:
        int: Number of occurrences found.

    Examples:
        >>> item_count("milk;bread;eggs", "bread", separator=";")
        1
    """
    regexp = separator_regexp or re.escape(separator or DEFAULT_SEPARATOR)
    pattern = f"(^|{regexp}){re.escape(item)}($|{regexp})"
    return count_matches(text, pattern, re.UNICODE)
