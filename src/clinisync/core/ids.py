"""Resource identifiers and reference handling."""

from __future__ import annotations

import re

from ulid import ULID

# FHIR logical ids: 1-64 chars of [A-Za-z0-9\-\.]
_RESOURCE_ID_RE = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")

# FHIR resource type names are PascalCase ASCII.
_RESOURCE_TYPE_RE = re.compile(r"^[A-Z][A-Za-z]+$")

# Relative reference, optionally preceded by a server base and followed by
# a _history segment: [base/]Type/id[/_history/vid]
_REFERENCE_RE = re.compile(
    r"(?:^|/)(?P<type>[A-Z][A-Za-z]+)/(?P<id>[A-Za-z0-9\-.]{1,64})(?:/_history/(?P<vid>[^/]+))?/?$"
)


def generate_resource_id() -> str:
    """Generate a new logical id for a locally created record.

    ULIDs sort by creation time and use only FHIR-legal characters.
    """
    return str(ULID()).lower()


def validate_resource_id(resource_id: str) -> bool:
    """Return ``True`` if *resource_id* is a legal FHIR logical id."""
    return isinstance(resource_id, str) and bool(_RESOURCE_ID_RE.match(resource_id))


def validate_resource_type(resource_type: str) -> bool:
    """Return ``True`` if *resource_type* looks like a FHIR resource type name."""
    return isinstance(resource_type, str) and bool(_RESOURCE_TYPE_RE.match(resource_type))


def format_reference(resource_type: str, resource_id: str) -> str:
    """Return the relative reference ``Type/id``."""
    return f"{resource_type}/{resource_id}"


def parse_reference(reference: str) -> tuple[str, str, str | None] | None:
    """Split a reference into ``(type, id, version_id)``.

    Accepts relative (``Patient/1``), absolute
    (``http://srv/fhir/Patient/1``), and versioned
    (``Patient/1/_history/3``) forms.  Returns ``None`` for anything else,
    including contained (``#x``) and urn references.

    Examples::

        >>> parse_reference("Patient/123")
        ('Patient', '123', None)
        >>> parse_reference("https://hapi.example/fhir/Patient/123/_history/2")
        ('Patient', '123', '2')
    """
    if not isinstance(reference, str) or not reference or reference.startswith("#"):
        return None
    match = _REFERENCE_RE.search(reference)
    if match is None:
        return None
    return match.group("type"), match.group("id"), match.group("vid")


def normalize_reference(reference: str) -> str | None:
    """Return the ``Type/id`` form of *reference*, or ``None`` if unparseable."""
    parsed = parse_reference(reference)
    if parsed is None:
        return None
    return format_reference(parsed[0], parsed[1])
