"""
Request path normalization and mapping onto the cache root.
"""

import os
from dataclasses import dataclass

from werkzeug.security import safe_join

from misv.errors import InvalidPath

INDEX_FILE = "index.html"


@dataclass(frozen=True)
class ResolvedPath:
    """
    A request path that is safe to fetch and to store.

    Attributes:
        url_path: Normalized, slash-rooted URL path (keeps a trailing slash)
        local_path: Absolute filesystem path inside the cache root
    """
    url_path: str
    local_path: str


def normalize(raw_path: str) -> str:
    """
    Collapse ``.`` and ``..`` segments and duplicate slashes.

    A trailing slash on a non-root path is kept, since it marks a directory
    request.

    Args:
        raw_path: The decoded request path

    Returns:
        The normalized path

    Raises:
        InvalidPath: Not slash-rooted, contains a NUL byte or a wildcard
            segment, or climbs above the root
    """
    if not raw_path.startswith("/"):
        raise InvalidPath("Invalid path", path=raw_path)
    if "\x00" in raw_path:
        raise InvalidPath("Invalid path: NUL byte", path=raw_path)

    segments = []
    for segment in raw_path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise InvalidPath("Invalid path: escapes root", path=raw_path)
            segments.pop()
            continue
        if not segment.strip("*"):
            raise InvalidPath("Invalid path: wildcard segment", path=raw_path)
        segments.append(segment)

    path = "/" + "/".join(segments)
    if segments and raw_path.endswith("/"):
        path += "/"
    return path


def with_index(url_path: str) -> str:
    """Append ``index.html`` to a directory path; other paths are returned unchanged."""
    if url_path.endswith("/"):
        return url_path + INDEX_FILE
    return url_path


class PathResolver:
    """Maps request paths onto files under a cache root."""

    def __init__(self, root: str) -> None:
        self.root = root

    def resolve(self, raw_path: str) -> ResolvedPath:
        """
        Normalize a request path and join it against the cache root.

        Args:
            raw_path: The decoded request path

        Returns:
            ResolvedPath for the request

        Raises:
            InvalidPath: The path is malformed or would leave the root
        """
        url_path = normalize(raw_path)
        return ResolvedPath(url_path=url_path, local_path=self.local_path(url_path))

    def local_path(self, url_path: str) -> str:
        relative = url_path.strip("/")
        if not relative:
            return self.root
        joined = safe_join(self.root, relative)
        if joined is None:
            raise InvalidPath("Invalid path: escapes root", path=url_path)
        return os.path.normpath(joined)
