"""Shared URL utilities: resolve locale templates and derive baseline slugs."""

from __future__ import annotations

import re

LOCALE_PLACEHOLDER = "{locale}"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def resolve_url(url_template: str, locale: str) -> str:
    """Substitute a locale code into a URL template."""
    return url_template.replace(LOCALE_PLACEHOLDER, locale)


def slug_from_url(url: str) -> str:
    """Derive a stable, filesystem-safe key from a fully resolved URL.

    Every character outside ``[a-zA-Z0-9]`` becomes ``_``, so
    ``https://example.com/en`` maps to ``https___example_com_en``.
    """
    return _NON_ALNUM.sub("_", url)
