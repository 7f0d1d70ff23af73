"""
Storage key strategy.

Deterministic object-storage paths for asset originals and renditions:

- Originals:  org/{org}/proj/{project}/asset/{asset}/original/v{version}/{filename}
- Renditions: org/{org}/proj/{project}/asset/{asset}/renditions/{rendition}/{filename}

The format is a wire contract; other systems parse keys back into their
parts, so parse_key() accepts exactly what the generators produce.
"""
import re
from dataclasses import dataclass
from typing import Optional

MAX_FILENAME_BYTES = 255
FALLBACK_FILENAME = "unnamed"

ORIGINAL = "original"
RENDITION = "rendition"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9.\-_]")
_UNDERSCORE_RUNS = re.compile(r"_{2,}")

_ORIGINAL_PATTERN = re.compile(
    r"^org/(?P<org>[^/]+)/proj/(?P<project>[^/]+)/asset/(?P<asset>[^/]+)"
    r"/original/v(?P<version>[1-9][0-9]*)/(?P<filename>[^/]+)$"
)
_RENDITION_PATTERN = re.compile(
    r"^org/(?P<org>[^/]+)/proj/(?P<project>[^/]+)/asset/(?P<asset>[^/]+)"
    r"/renditions/(?P<rendition>[^/]+)/(?P<filename>[^/]+)$"
)


class InvalidStorageKey(ValueError):
    """Raised for keys or key parts that do not fit the key format."""


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe for use as the last key segment.

    Total and idempotent: any input yields a non-empty name made only of
    [A-Za-z0-9.-_], and sanitizing the result again returns it unchanged.
    """
    cleaned = _INVALID_CHARS.sub("_", filename or "")
    cleaned = _UNDERSCORE_RUNS.sub("_", cleaned)
    # Only ASCII survives the substitution, so characters == bytes here
    cleaned = cleaned[:MAX_FILENAME_BYTES]
    if not cleaned.strip("."):
        return FALLBACK_FILENAME
    return cleaned


def _segment(value: object, label: str) -> str:
    text = str(value)
    if not text or "/" in text:
        raise InvalidStorageKey(f"Invalid {label} for storage key: {text!r}")
    return text


def _base_path(organization_id: object, project_id: object, asset_id: object) -> str:
    return "org/{}/proj/{}/asset/{}".format(
        _segment(organization_id, "organization id"),
        _segment(project_id, "project id"),
        _segment(asset_id, "asset id"),
    )


def original_key(
    organization_id: object,
    project_id: object,
    asset_id: object,
    version: int,
    filename: str,
) -> str:
    """Key of an original upload for the given version (1-based)."""
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise InvalidStorageKey(f"Version must be a positive integer, got {version!r}")
    base = _base_path(organization_id, project_id, asset_id)
    return f"{base}/original/v{version}/{sanitize_filename(filename)}"


def rendition_key(
    organization_id: object,
    project_id: object,
    asset_id: object,
    rendition: str,
    filename: str,
) -> str:
    """Key of a derived rendition (thumbnail, preview)."""
    base = _base_path(organization_id, project_id, asset_id)
    return f"{base}/renditions/{_segment(rendition, 'rendition name')}/{sanitize_filename(filename)}"


@dataclass(frozen=True)
class StorageKey:
    """Parsed form of a storage key."""
    organization_id: str
    project_id: str
    asset_id: str
    kind: str  # "original" or "rendition"
    filename: str
    version: Optional[int] = None
    rendition: Optional[str] = None

    def render(self) -> str:
        if self.kind == ORIGINAL:
            return original_key(
                self.organization_id, self.project_id, self.asset_id,
                self.version, self.filename,
            )
        if self.kind == RENDITION:
            return rendition_key(
                self.organization_id, self.project_id, self.asset_id,
                self.rendition, self.filename,
            )
        raise InvalidStorageKey(f"Unknown storage key kind: {self.kind!r}")


def parse_key(key: str) -> StorageKey:
    """
    Parse a storage key back into its parts.

    Raises InvalidStorageKey unless the key matches one of the two
    formats exactly, including an already-sanitized filename.
    """
    match = _ORIGINAL_PATTERN.match(key)
    if match:
        parsed = StorageKey(
            organization_id=match["org"],
            project_id=match["project"],
            asset_id=match["asset"],
            kind=ORIGINAL,
            version=int(match["version"]),
            filename=match["filename"],
        )
    else:
        match = _RENDITION_PATTERN.match(key)
        if not match:
            raise InvalidStorageKey(f"Not an asset storage key: {key!r}")
        parsed = StorageKey(
            organization_id=match["org"],
            project_id=match["project"],
            asset_id=match["asset"],
            kind=RENDITION,
            rendition=match["rendition"],
            filename=match["filename"],
        )

    if sanitize_filename(parsed.filename) != parsed.filename:
        raise InvalidStorageKey(f"Storage key filename is not sanitized: {key!r}")
    return parsed
