"""
Render a person's life story as HTML.

Stories are plain text that may reference other people with markers such as
``[person:42]``. Literal text is escaped; each marker becomes a link labelled
with the referenced person's name.
"""

from __future__ import annotations

import html
import re
from typing import Callable, Dict, Iterable, Optional

from familytree.db import PersonRecord

PERSON_MARKER = re.compile(r"\[person:(\d+)\]")
DEFAULT_LINK_PREFIX = "/people/details/"

PeopleLookup = Callable[[Iterable[int]], Dict[int, PersonRecord]]


def referenced_ids(text: Optional[str]) -> list[int]:
    """Distinct person ids referenced in ``text``, in first-seen order."""
    if not text:
        return []
    return list(dict.fromkeys(int(m.group(1)) for m in PERSON_MARKER.finditer(text)))


def _anchor(person_id: int, person: Optional[PersonRecord], link_prefix: str) -> str:
    label = person.display_name if person and person.display_name else f"Unknown ({person_id})"
    return (
        f'<a href="{link_prefix}{person_id}" class="person-link" '
        f'data-person-id="{person_id}">{html.escape(label, quote=False)}</a>'
    )


def render_story(
    text: Optional[str],
    lookup: PeopleLookup,
    *,
    link_prefix: str = DEFAULT_LINK_PREFIX,
) -> str:
    if not text:
        return ""
    ids = referenced_ids(text)
    people = lookup(ids) if ids else {}

    parts: list[str] = []
    cursor = 0
    for match in PERSON_MARKER.finditer(text):
        parts.append(html.escape(text[cursor : match.start()], quote=False))
        person_id = int(match.group(1))
        parts.append(_anchor(person_id, people.get(person_id), link_prefix))
        cursor = match.end()
    parts.append(html.escape(text[cursor:], quote=False))
    return "".join(parts)
