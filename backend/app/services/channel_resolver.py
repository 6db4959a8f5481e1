from __future__ import annotations

from urllib.parse import unquote, urlsplit

from backend.app.services.errors import UnrecognizedChannelReference

# First path segments that carry the identifier in the segment after them.
_CUSTOM_NAME_MARKER = "c"
_HANDLE_PREFIX = "@"
_SINGLE_SEGMENT_MARKERS: frozenset[str] = frozenset({"channel", "user"})


def resolve_channel_reference(raw_reference: str) -> str:
    """Turn a channel URL or bare handle/id into the identifier used for listing.

    - ``/c/<name>`` and ``/@handle/...`` keep the first two path segments
      joined with ``/`` (``c/name``, ``@handle/videos``); a handle URL with
      no second segment yields just ``@handle``.
    - ``/channel/<id>`` and ``/user/<name>`` yield the second segment.
    - Anything that is not an absolute URL is returned unchanged, so a pasted
      ``@handle`` or ``UC...`` id works as-is.
    """
    reference = raw_reference.strip()
    if not reference:
        raise UnrecognizedChannelReference(raw_reference)

    parsed = urlsplit(reference)
    if not parsed.scheme or not parsed.netloc:
        return reference

    segments = [unquote(segment) for segment in parsed.path.split("/") if segment]
    if not segments:
        raise UnrecognizedChannelReference(raw_reference)

    first = segments[0]
    if first.startswith(_HANDLE_PREFIX) and len(first) > 1:
        return "/".join(segments[:2])
    if first == _CUSTOM_NAME_MARKER and len(segments) > 1:
        return "/".join(segments[:2])
    if first in _SINGLE_SEGMENT_MARKERS and len(segments) > 1:
        return segments[1]
    raise UnrecognizedChannelReference(raw_reference)
