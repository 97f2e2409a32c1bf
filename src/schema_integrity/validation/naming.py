"""Identifier helpers shared by route and form validation."""

import re

_SEPARATORS = re.compile(r"[-\s]+")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")


def pluralize(word: str) -> str:
    """English plural for identifiers.  Already-plural words are kept.

    Example:
        >>> pluralize("category"), pluralize("box"), pluralize("orders")
        ('categories', 'boxes', 'orders')
    """
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and len(word) > 1 and lower[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lower.endswith(("ss", "us", "is", "x", "z", "ch", "sh")):
        return word + "es"
    if lower.endswith("s"):
        return word
    return word + "s"


def singularize(word: str) -> str:
    """Inverse of ``pluralize``.

    Example:
        >>> singularize("categories"), singularize("boxes"), singularize("status")
        ('category', 'box', 'status')
    """
    lower = word.lower()
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lower.endswith(("sses", "uses", "xes", "zes", "ches", "shes")):
        return word[:-2]
    if lower.endswith("s") and not lower.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def snake_case(name: str) -> str:
    """``OrderItem`` / ``order-item`` / ``orderItem`` -> ``order_item``."""
    value = _ACRONYM_BOUNDARY.sub(r"\1_\2", name.strip())
    value = _CAMEL_BOUNDARY.sub(r"\1_\2", value)
    return _SEPARATORS.sub("_", value).lower()


def kebab_case(name: str) -> str:
    return snake_case(name).replace("_", "-")


def pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in snake_case(name).split("_") if part)


def compact(name: str) -> str:
    """Lowercase with every non-alphanumeric character removed."""
    return re.sub(r"[^a-z0-9]", "", name.lower())
