"""
Format Inference Policies

ContentTypePolicy decides which decoder to use for a payload: the declared
Content-Type wins, and byte-signature sniffing is only consulted when the
declared type is missing or ambiguous.

CdnUrlPolicy holds the conventions of the avatar CDN: which URL variant to
fetch and which output format the caller asked for through the URL's
extension.
"""

from pathlib import PurePosixPath
from typing import Dict, FrozenSet, Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from src.core.exceptions import InvalidImageUrlError, UnsupportedFormatError
from src.pipeline.models import OutputFormat

DECLARED_TYPES: Dict[str, str] = {
    "image/png": "PNG",
    "image/apng": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/pjpeg": "JPEG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}

AMBIGUOUS_TYPES: FrozenSet[str] = frozenset({
    "",
    "application/octet-stream",
    "binary/octet-stream",
    "application/unknown",
})

EXTENSION_FORMATS: Dict[str, OutputFormat] = {
    ".png": OutputFormat.PNG,
    ".jpg": OutputFormat.JPEG,
    ".jpeg": OutputFormat.JPEG,
    ".webp": OutputFormat.WEBP,
    ".gif": OutputFormat.GIF,
}


def normalize_content_type(content_type: Optional[str]) -> str:
    """Strip parameters and lower-case a Content-Type header value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def sniff_format(data: bytes) -> Optional[str]:
    """Identify a supported format from its magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "PNG"
    if data.startswith(b"\xff\xd8\xff"):
        return "JPEG"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "GIF"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "WEBP"
    return None


class ContentTypePolicy:
    """Trust the declared type over the sniffed type, sniff as fallback."""

    def __init__(self, declared_types: Optional[Dict[str, str]] = None):
        self.declared_types = declared_types or DECLARED_TYPES

    def resolve(self, content_type: Optional[str], data: bytes) -> str:
        """
        Pick the Pillow format name used to decode ``data``.

        Raises:
            UnsupportedFormatError: declared type is not a supported image
                type, or it is ambiguous and the signature is unknown.
        """
        declared = normalize_content_type(content_type)

        if declared in AMBIGUOUS_TYPES:
            sniffed = sniff_format(data)
            if sniffed is None:
                raise UnsupportedFormatError(
                    "could not determine image format",
                    details={"content_type": declared or None}
                )
            return sniffed

        image_format = self.declared_types.get(declared)
        if image_format is None:
            raise UnsupportedFormatError(
                f"unsupported content type {declared}",
                details={"content_type": declared}
            )
        return image_format


class CdnUrlPolicy:
    """URL conventions for avatars served by the Discord CDN."""

    # Extensions the CDN re-renders as a static PNG when asked for ".png"
    REWRITE_EXTENSIONS = (".gif", ".jpg", ".jpeg", ".webp")

    def __init__(self, fetch_as_png: bool = True, allowed_hosts: Iterable[str] = ()):
        self.fetch_as_png = fetch_as_png
        self.allowed_hosts = tuple(host.lower() for host in allowed_hosts)

    def validate(self, url: str) -> str:
        """Check the basic shape of an avatar URL and return it stripped."""
        url = (url or "").strip()
        try:
            parts = urlsplit(url)
        except ValueError as e:
            raise InvalidImageUrlError(f"malformed image url: {e}")

        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise InvalidImageUrlError(
                "image url must be an absolute http(s) url",
                details={"url": url[:200]}
            )

        if self.allowed_hosts and parts.hostname.lower() not in self.allowed_hosts:
            raise InvalidImageUrlError(
                f"image host {parts.hostname} is not allowed",
                details={"host": parts.hostname}
            )
        return url

    def fetch_url(self, url: str) -> str:
        """URL to request from the CDN for a validated avatar URL."""
        if not self.fetch_as_png:
            return url

        parts = urlsplit(url)
        path = PurePosixPath(parts.path)
        if path.suffix.lower() not in self.REWRITE_EXTENSIONS:
            return url
        new_path = str(path.with_suffix(".png"))
        return urlunsplit((parts.scheme, parts.netloc, new_path, parts.query, parts.fragment))

    def output_format(self, url: str) -> OutputFormat:
        """Output format requested through the URL's extension, PNG by default."""
        suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
        return EXTENSION_FORMATS.get(suffix, OutputFormat.PNG)
