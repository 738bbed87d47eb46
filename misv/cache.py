"""
Local cache probing and population.

The cache is the filesystem tree under the root directory. Probing never
touches the network; population streams an origin body into place.
"""

import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from misv.errors import AmbiguousIndex, CacheAccessError, CacheCreateError, CacheDirError, CacheWriteError
from misv.paths import INDEX_FILE, PathResolver, ResolvedPath, with_index

logger = logging.getLogger(__name__)

FILE_MODE = 0o644


class CacheState(Enum):
    HIT = "hit"
    MISS = "miss"


@dataclass(frozen=True)
class ProbeResult:
    state: CacheState
    local_path: Optional[str] = None


class CacheProber:
    """Decides whether a resolved request can be served from disk."""

    def probe(self, resolved: ResolvedPath) -> ProbeResult:
        """
        Probe the filesystem for a request.

        A regular file is a hit. A directory is a hit when it holds an
        ``index.html`` file and a miss when it holds none.

        Args:
            resolved: The resolved request path

        Returns:
            ProbeResult; on a hit ``local_path`` is the file to serve

        Raises:
            AmbiguousIndex: The directory's ``index.html`` is itself a directory
            CacheAccessError: The filesystem failed for a reason other than absence
        """
        path = resolved.local_path
        is_dir = self._stat_is_dir(path, resolved.url_path)
        if is_dir is None:
            return ProbeResult(CacheState.MISS)
        if not is_dir:
            return ProbeResult(CacheState.HIT, path)

        index = os.path.join(path, INDEX_FILE)
        is_dir = self._stat_is_dir(index, resolved.url_path)
        if is_dir is None:
            return ProbeResult(CacheState.MISS)
        if is_dir:
            raise AmbiguousIndex(f"{index} is a directory", path=resolved.url_path)
        return ProbeResult(CacheState.HIT, index)

    @staticmethod
    def _stat_is_dir(path: str, url_path: str) -> Optional[bool]:
        """Return ``None`` when absent, otherwise whether ``path`` is a directory."""
        try:
            return stat.S_ISDIR(os.stat(path).st_mode)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheAccessError(f"Accessing {path}", path=url_path, cause=e) from e


class CachePopulator:
    """Writes fetched bodies into the cache under their canonical path."""

    def __init__(self, resolver: PathResolver) -> None:
        self.resolver = resolver

    def store(self, url_path: str, chunks: Iterable[bytes]) -> str:
        """
        Stream a body into the cache file for ``url_path``.

        The body goes to a temporary file next to the target, which is moved
        into place once complete. On failure the temporary file is removed and
        any previous cache entry is left untouched. When the target is already
        a directory the body is stored as its ``index.html``.

        Args:
            url_path: Canonical URL path of the file (``index.html`` already appended)
            chunks: The body, as an iterable of byte chunks

        Returns:
            The absolute path of the written file

        Raises:
            InvalidPath: The path would leave the cache root
            CacheDirError: Parent directories could not be created
            CacheCreateError: The file could not be created
            CacheWriteError: Copying the body or moving the file into place failed
        """
        target = self.resolver.local_path(url_path)
        if os.path.isdir(target):
            url_path = with_index(url_path.rstrip("/") + "/")
            target = self.resolver.local_path(url_path)
        directory = os.path.dirname(target)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise CacheDirError(f"Failed to create {directory}", path=url_path, cause=e) from e

        try:
            handle = tempfile.NamedTemporaryFile(
                mode="wb", dir=directory, prefix=".misv-", suffix=".part", delete=False
            )
        except OSError as e:
            raise CacheCreateError(f"Failed to create {target}", path=url_path, cause=e) from e

        written = 0
        try:
            with handle:
                for chunk in chunks:
                    if chunk:
                        handle.write(chunk)
                        written += len(chunk)
            os.chmod(handle.name, FILE_MODE)
            os.replace(handle.name, target)
        except OSError as e:
            self._discard(handle.name)
            raise CacheWriteError(f"Failed to write {target}", path=url_path, cause=e) from e

        logger.info(f"Cached {url_path} ({written} bytes) -> {target}")
        return target

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {path}: {e}")
