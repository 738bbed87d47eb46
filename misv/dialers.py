"""
Pluggable TCP dialers for origin traffic.

A dialer opens the TCP connection underneath each HTTPS connection the origin
session makes. ``DirectDialer`` connects straight to the origin,
``Socks5Dialer`` tunnels through a SOCKS5 proxy with PySocks. ``DialerAdapter``
mounts a dialer on a ``requests.Session``.
"""

import logging
import socket
from typing import Optional, Tuple

import requests
import socks  # PySocks
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NewConnectionError

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


def _socket_timeout(timeout) -> Optional[float]:
    """urllib3 may hand over a sentinel for "no timeout set"; sockets only take numbers."""
    if isinstance(timeout, (int, float)):
        return timeout
    return None


class DirectDialer:
    """Connects directly to the target address."""

    def dial(self, address: Address, timeout: Optional[float] = None) -> socket.socket:
        return socket.create_connection(address, timeout=timeout)

    def __repr__(self) -> str:
        return "DirectDialer()"


class Socks5Dialer:
    """
    Connects through a SOCKS5 proxy.

    Hostnames are resolved by the proxy, so DNS lookups for the origin do not
    leave the local machine.

    Attributes:
        proxy_host (str): Address of the SOCKS5 proxy
        proxy_port (int): Port of the SOCKS5 proxy
    """

    def __init__(self, proxy_host: str, proxy_port: int) -> None:
        self.proxy_host = proxy_host
        self.proxy_port = proxy_port

    def dial(self, address: Address, timeout: Optional[float] = None) -> socket.socket:
        """
        Open a tunnelled connection to ``address``.

        Args:
            address: Target host and port
            timeout: Socket timeout in seconds, ``None`` for blocking

        Returns:
            Connected socket

        Raises:
            socks.ProxyError: The proxy refused or failed the handshake
            OSError: The proxy could not be reached
        """
        s = socks.socksocket()
        s.set_proxy(socks.SOCKS5, self.proxy_host, self.proxy_port, rdns=True)
        s.settimeout(timeout)
        try:
            s.connect(address)
        except OSError:
            s.close()
            raise
        return s

    def __repr__(self) -> str:
        return f"Socks5Dialer({self.proxy_host}:{self.proxy_port})"


def create_dialer(proxy_address: Optional[Address] = None):
    """Pick the dialer for a configured SOCKS5 proxy address, or a direct one."""
    if proxy_address is None:
        return DirectDialer()
    return Socks5Dialer(*proxy_address)


class _DialerConnectionMixin:
    dialer = None

    def _new_conn(self) -> socket.socket:
        try:
            return self.dialer.dial((self._dns_host, self.port), timeout=_socket_timeout(self.timeout))
        except socket.timeout as e:
            raise ConnectTimeoutError(
                self, f"Connection to {self.host} timed out. (connect timeout={self.timeout})"
            ) from e
        except OSError as e:
            raise NewConnectionError(self, f"Failed to establish a new connection: {e}") from e


def _pool_classes(dialer):
    """Build urllib3 pool classes whose connections are opened by ``dialer``."""
    http_conn = type("DialerHTTPConnection", (_DialerConnectionMixin, HTTPConnection), {"dialer": dialer})
    https_conn = type("DialerHTTPSConnection", (_DialerConnectionMixin, HTTPSConnection), {"dialer": dialer})
    return {
        "http": type("DialerHTTPConnectionPool", (HTTPConnectionPool,), {"ConnectionCls": http_conn}),
        "https": type("DialerHTTPSConnectionPool", (HTTPSConnectionPool,), {"ConnectionCls": https_conn}),
    }


class DialerAdapter(HTTPAdapter):
    """Transport adapter that opens every connection through a dialer."""

    def __init__(self, dialer, **kwargs) -> None:
        self.dialer = dialer
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)
        self.poolmanager.pool_classes_by_scheme = _pool_classes(self.dialer)


def create_session(dialer) -> requests.Session:
    """
    Build the origin session shared by all request handlers.

    Environment proxy settings are ignored so that the dialer alone decides how
    connections are made.

    Args:
        dialer: The dialer opening TCP connections

    Returns:
        requests.Session with the dialer mounted for http and https
    """
    session = requests.Session()
    session.trust_env = False
    adapter = DialerAdapter(dialer)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    logger.debug(f"Origin session using {dialer!r}")
    return session
