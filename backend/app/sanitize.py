"""
Markup stripping for user-supplied query strings.

The search term and `streetQuery` travel into SQL parameters and log lines;
stripping markup first keeps injected HTML out of both. nh3 (ammonia) drops
every tag and removes the *content* of <script>/<style> entirely.

nh3 serializes its result as HTML, so a literal "&" comes back as "&amp;".
The cleaned text is compared against stored plain text, which means the
entities are decoded again afterwards.
"""

import html

import nh3


def sanitize_text(value: str) -> str:
    """Return `value` with all markup removed and surrounding whitespace trimmed."""
    return html.unescape(nh3.clean(value, tags=set(), attributes={})).strip()
