"""
Image reference rewriting from the bitnami/ repository path to bitnamilegacy/.

A reference needs rewriting when any path segment is exactly "bitnami"
(optionally behind a registry host or other prefix) and it is not already
on bitnamilegacy. Matching is case-insensitive.
"""

import re
from typing import Optional

_BITNAMI = re.compile(r"(^|.*/)bitnami/", re.IGNORECASE)
_BITNAMI_LEGACY = re.compile(r"(^|.*/)bitnamilegacy/", re.IGNORECASE)
_FIRST_BITNAMI = re.compile(r"(^|/)bitnami/", re.IGNORECASE)

LEGACY_SEGMENT = "bitnamilegacy/"


def needs_rewrite(image: Optional[str]) -> bool:
    """Return True if the image is on bitnami/ and not already on bitnamilegacy/."""
    if not image:
        return False
    return bool(_BITNAMI.match(image)) and not _BITNAMI_LEGACY.match(image)


def rewrite(image: str) -> str:
    """Replace the first case-insensitive "bitnami/" path segment with "bitnamilegacy/".

    Only a whole segment counts, so "not-bitnami/" is left alone.

    Images that do not need rewriting are returned unchanged, so the
    function is idempotent.

    >>> rewrite("docker.io/bitnami/redis:7.2")
    'docker.io/bitnamilegacy/redis:7.2'
    >>> rewrite("Bitnami/nginx")
    'bitnamilegacy/nginx'
    """
    if not needs_rewrite(image):
        return image
    return _FIRST_BITNAMI.sub(r"\1" + LEGACY_SEGMENT, image, count=1)


def references_bitnami(image: Optional[str]) -> bool:
    """Loose inventory match: any mention of bitnami, legacy or not."""
    return bool(image) and "bitnami" in image.lower()
