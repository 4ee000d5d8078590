"""
Photo references.

A photo travels through the system in one of four shapes, resolved
explicitly at each boundary instead of sniffing strings at every call site:

    Absent          no photo
    Url             a fully-qualified, loadable URL
    StorageKey      a blob-store key that still needs a public URL
    PendingUpload   raw bytes waiting to be uploaded

Only Url and StorageKey are ever persisted.
"""

import base64
import binascii
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from src.core.errors import ValidationError

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<payload>.+)$", re.DOTALL)
DEFAULT_EXTENSION = "png"
KEY_PREFIX = "messages"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class Absent:
    """No photo attached."""


@dataclass(frozen=True)
class Url:
    """A public URL."""

    url: str


@dataclass(frozen=True)
class StorageKey:
    """A key inside the blob store, resolved to a URL at display time."""

    key: str


@dataclass(frozen=True)
class PendingUpload:
    """Photo bytes that have not reached blob storage yet."""

    data: bytes
    content_type: str
    filename: Optional[str] = None

    def __repr__(self) -> str:
        return f"PendingUpload(content_type={self.content_type!r}, size={len(self.data)})"


PhotoRef = Union[Absent, Url, StorageKey, PendingUpload]

ABSENT = Absent()


def parse_photo(value: Optional[str]) -> PhotoRef:
    """
    Classifies a raw `photo` string received at a boundary.

    Raises:
        ValidationError: the value looks like a data URI but is malformed.
    """
    if not value:
        return ABSENT
    if value.startswith(("http://", "https://")):
        return Url(value)
    if value.startswith("data:"):
        return decode_data_uri(value)
    return StorageKey(value)


def decode_data_uri(value: str) -> PendingUpload:
    """Decodes `data:<mime-type>;base64,<payload>` into a PendingUpload."""
    match = DATA_URI_RE.match(value)
    if not match:
        raise ValidationError("photo must be a base64 data URI")
    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("photo payload is not valid base64") from e
    return PendingUpload(data=data, content_type=match.group("mime"))


def to_data_uri(data: bytes, content_type: str) -> str:
    """Encodes bytes as a self-describing embedded payload."""
    payload = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{payload}"


def extension_for(content_type: Optional[str], filename: Optional[str] = None) -> str:
    """
    Picks the stored file extension.
    The original filename wins; otherwise the MIME subtype, else png.
    """
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].strip().lower()
        if ext.isalnum():
            return ext

    if content_type and "/" in content_type:
        subtype = content_type.split("/", 1)[1].split(";", 1)[0].strip().lower()
        # image/svg+xml -> svg
        subtype = subtype.split("+", 1)[0]
        if subtype.isalnum():
            return subtype

    return DEFAULT_EXTENSION


def generate_photo_key(extension: str = DEFAULT_EXTENSION) -> str:
    """Timestamp plus random suffix, e.g. messages/1714560000000-k3j9x0a2bq.png"""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(10))
    return f"{KEY_PREFIX}/{int(time.time() * 1000)}-{suffix}.{extension}"


def serialize_photo(photo: PhotoRef) -> Optional[str]:
    """
    Renders a reference for the wire.
    PendingUpload becomes a data URI; only the server-mediated path accepts it.
    """
    if isinstance(photo, Url):
        return photo.url
    if isinstance(photo, StorageKey):
        return photo.key
    if isinstance(photo, PendingUpload):
        return to_data_uri(photo.data, photo.content_type)
    return None


# === Display ===

NO_PHOTO_LABEL = "No photo shared"
UNAVAILABLE_LABEL = "Image not available"


@dataclass(frozen=True)
class PhotoDisplay:
    """What a message card shows in its photo slot."""

    status: str  # "none" | "available" | "unavailable"
    url: Optional[str] = None

    @property
    def label(self) -> Optional[str]:
        if self.status == "none":
            return NO_PHOTO_LABEL
        if self.status == "unavailable":
            return UNAVAILABLE_LABEL
        return None

    @classmethod
    def none(cls) -> "PhotoDisplay":
        return cls(status="none")

    @classmethod
    def available(cls, url: str) -> "PhotoDisplay":
        return cls(status="available", url=url)

    @classmethod
    def unavailable(cls) -> "PhotoDisplay":
        return cls(status="unavailable")


class PhotoResolver:
    """
    Turns a stored `photo` value into something loadable.
    Never raises: a failure degrades that one photo to "unavailable".
    """

    def __init__(self, public_url: Optional[Callable[[str], str]] = None):
        self._public_url = public_url

    def resolve(self, value: Optional[str]) -> PhotoDisplay:
        try:
            ref = parse_photo(value)
        except ValidationError:
            logger.warning("Stored photo reference is malformed")
            return PhotoDisplay.unavailable()

        if isinstance(ref, Absent):
            return PhotoDisplay.none()
        if isinstance(ref, Url):
            return PhotoDisplay.available(ref.url)
        if isinstance(ref, PendingUpload):
            # Raw bytes never count as a persisted reference.
            return PhotoDisplay.unavailable()

        if self._public_url is None:
            return PhotoDisplay.unavailable()
        try:
            url = self._public_url(ref.key)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Could not resolve photo key %s: %s", ref.key, e)
            return PhotoDisplay.unavailable()

        if not url:
            return PhotoDisplay.unavailable()
        return PhotoDisplay.available(url)
