"""
Process-wide configuration.

The configuration is built once before the listener starts and is shared,
read-only, by every request handler.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit

from misv.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:146.0) Gecko/20100101 Firefox/146.0"
DEFAULT_LOG_DIR = "logs"


@dataclass(frozen=True)
class MirrorConfig:
    """
    Immutable server configuration.

    Attributes:
        bind: ``host:port`` the server listens on
        origin: Hostname of the origin server, e.g. ``example.com``
        root: Absolute path of the cache root directory
        socks5: Optional ``host:port`` of a SOCKS5 proxy for origin traffic
        user_agent: User-Agent sent to the origin
        xff: X-Forwarded-For value; ``None`` omits the header
        log_dir: Directory for rotating log files
    """
    bind: str
    origin: str
    root: str
    socks5: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    xff: Optional[str] = None
    log_dir: str = DEFAULT_LOG_DIR

    @classmethod
    def create(
        cls,
        bind: str,
        origin: str,
        root: Optional[str] = None,
        socks5: Optional[str] = None,
        user_agent: Optional[str] = None,
        xff: Optional[str] = None,
        log_dir: Optional[str] = None,
    ) -> "MirrorConfig":
        """
        Build a configuration, applying defaults and validating addresses.

        Args:
            bind: Listen address (required)
            origin: Origin hostname (required)
            root: Cache root; defaults to ``./<origin>``
            socks5: SOCKS5 proxy address
            user_agent: User-Agent override; empty means the default
            xff: X-Forwarded-For override; empty means disabled
            log_dir: Log directory; defaults to ``logs``

        Returns:
            MirrorConfig with an absolute root path

        Raises:
            ConfigError: A required value is missing or an address is malformed
        """
        if not bind:
            raise ConfigError("missing required argument: --bind")
        if not origin:
            raise ConfigError("missing required argument: --origin")
        origin = origin.strip().strip("/")
        if not origin or "/" in origin:
            raise ConfigError(f"invalid origin host: {origin!r}")

        parse_address(bind)
        if socks5:
            parse_address(socks5)

        if not root:
            root = origin
            logger.info(f"Root directory not specified; defaulting to ./{origin}")

        return cls(
            bind=bind,
            origin=origin,
            root=os.path.abspath(root),
            socks5=socks5 or None,
            user_agent=user_agent or DEFAULT_USER_AGENT,
            xff=xff or None,
            log_dir=log_dir or DEFAULT_LOG_DIR,
        )

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_address(self.bind)

    @property
    def proxy_address(self) -> Optional[Tuple[str, int]]:
        return parse_address(self.socks5) if self.socks5 else None


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` string.

    Accepts ``[v6addr]:port`` and ``:port`` (all interfaces).

    Args:
        address: The address to parse

    Returns:
        Tuple of host and port

    Raises:
        ConfigError: The address has no valid port
    """
    if address.startswith(":"):
        address = "0.0.0.0" + address
    try:
        parsed = urlsplit(f"//{address}")
        port = parsed.port
    except ValueError as e:
        raise ConfigError(f"invalid address {address!r}: {e}") from e
    if port is None or not parsed.hostname:
        raise ConfigError(f"invalid address {address!r}: expected host:port")
    return parsed.hostname, port


def prepare_root(root: str) -> str:
    """
    Make sure the cache root exists and is a directory, creating it if missing.

    Args:
        root: Path of the cache root

    Returns:
        The root path

    Raises:
        ConfigError: The root is not a directory, or cannot be accessed or created
    """
    try:
        if os.path.isdir(root):
            return root
        if os.path.lexists(root):
            raise ConfigError(f"{root} is not a directory")
        os.makedirs(root)
    except OSError as e:
        raise ConfigError(f"create {root}: {e}") from e
    logger.info(f"Root directory {root} not found. Created automatically.")
    return root
