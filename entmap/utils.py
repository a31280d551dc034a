"""
Naming helpers for entmap.

SQL identifiers are derived from Python names by these functions, so their
output is part of the database contract:
- camel_case_to_underscore: ``CamelCaseT`` -> ``camel_case_t``
- underscore_to_camel_case: ``camel_case`` -> ``camelCase``
- get_sql_name: explicit name if given, else the underscore form
- hash_code_to_string: short deterministic suffix for generated index names

Invariants:
    - camel_case_to_underscore is idempotent
    - stable_string_hash is stable across processes (unlike hash())

How to change safely:
    - Never change the output of these functions for existing inputs;
      doing so renames tables, columns and indexes of deployed databases
"""

from __future__ import annotations

import string

_LOWER_CASE_LETTERS = string.ascii_lowercase


def camel_case_to_underscore(value: str) -> str:
    """Convert a camelCase string to lower_case separated by underscores.

    Every upper-case character is lowered and, unless it is the first
    character, preceded by a single underscore.

    Example:
        >>> camel_case_to_underscore("CamelCaseTEST")
        'camel_case_t_e_s_t'
    """
    if value is None:
        raise TypeError("value must not be None")
    chars = []
    for index, ch in enumerate(value):
        if ch.isupper():
            if index > 0:
                chars.append("_")
            chars.append(ch.lower())
        else:
            chars.append(ch)
    return "".join(chars)


def underscore_to_camel_case(value: str) -> str:
    """Convert a string with underscores to camelCase.

    Each underscore is removed and the character that follows it is
    upper-cased. A following underscore is left as it is, so a double
    underscore collapses to one.

    Example:
        >>> underscore_to_camel_case("_camel_case")
        'CamelCase'
    """
    if value is None:
        raise TypeError("value must not be None")
    if "_" not in value:
        return value
    chars = list(value)
    i = value.index("_")
    while i < len(chars):
        if chars[i] == "_":
            del chars[i]
            if i < len(chars):
                chars[i] = chars[i].upper()
        i += 1
    return "".join(chars)


def get_sql_name(default_name: str, given_name: str | None = None) -> str:
    """Return the stripped given name if present, else the underscore form of the default."""
    if given_name is not None:
        given_name = given_name.strip()
        if given_name:
            return given_name
    return camel_case_to_underscore(default_name)


def stable_string_hash(value: str) -> int:
    """Polynomial (base 31) hash of a string, wrapped to a signed 32-bit int."""
    h = 0
    for ch in value:
        h = (31 * h + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def hash_code_to_string(hash_code: int) -> str:
    """Map a hash code to a short string of lower-case letters.

    The hash is folded to 16 bits, then each decimal digit (or a pair of
    digits forming 10-25) is mapped to a letter.
    """
    hash_code &= 0xFFFFFFFF
    folded = (hash_code ^ (hash_code >> 16)) & 0xFFFF
    if folded & 0x8000:
        folded -= 0x10000
    digits = str(abs(folded))
    letters = []
    i = 0
    length = len(digits)
    while i < length:
        idx = int(digits[i])
        if 0 < idx < 3 and i + 1 < length:
            second = int(digits[i + 1])
            if second < 6:
                idx = idx * 10 + second
                i += 1
        letters.append(_LOWER_CASE_LETTERS[idx])
        i += 1
    return "".join(letters)
