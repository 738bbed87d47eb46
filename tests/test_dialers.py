from unittest.mock import MagicMock, patch

import pytest
import socks
from urllib3.exceptions import NewConnectionError

from misv.dialers import DialerAdapter, DirectDialer, Socks5Dialer, create_dialer, create_session


def test_create_dialer_direct_by_default():
    assert isinstance(create_dialer(None), DirectDialer)


def test_create_dialer_socks5():
    dialer = create_dialer(("127.0.0.1", 1080))

    assert isinstance(dialer, Socks5Dialer)
    assert (dialer.proxy_host, dialer.proxy_port) == ("127.0.0.1", 1080)


def test_direct_dialer_connects():
    with patch("misv.dialers.socket.create_connection") as create_connection:
        sock = DirectDialer().dial(("example.com", 443), timeout=5)

    create_connection.assert_called_once_with(("example.com", 443), timeout=5)
    assert sock is create_connection.return_value


def test_socks5_dialer_tunnels_through_proxy():
    fake_socket = MagicMock()
    with patch("misv.dialers.socks.socksocket", return_value=fake_socket):
        sock = Socks5Dialer("10.0.0.2", 1080).dial(("example.com", 443), timeout=7)

    assert sock is fake_socket
    fake_socket.set_proxy.assert_called_once_with(socks.SOCKS5, "10.0.0.2", 1080, rdns=True)
    fake_socket.settimeout.assert_called_once_with(7)
    fake_socket.connect.assert_called_once_with(("example.com", 443))


def test_socks5_dialer_closes_on_failure():
    fake_socket = MagicMock()
    fake_socket.connect.side_effect = socks.ProxyConnectionError("proxy down")
    with patch("misv.dialers.socks.socksocket", return_value=fake_socket):
        with pytest.raises(socks.ProxyError):
            Socks5Dialer("10.0.0.2", 1080).dial(("example.com", 443))

    fake_socket.close.assert_called_once_with()


def _https_connection(adapter):
    pool_cls = adapter.poolmanager.pool_classes_by_scheme["https"]
    return pool_cls.ConnectionCls("example.com", 443)


def test_adapter_opens_connections_with_dialer():
    dialer = MagicMock()
    adapter = DialerAdapter(dialer)

    conn = _https_connection(adapter)
    sock = conn._new_conn()

    dialer.dial.assert_called_once()
    address = dialer.dial.call_args[0][0]
    assert address == ("example.com", 443)
    assert sock is dialer.dial.return_value


def test_adapter_wraps_dial_failures():
    dialer = MagicMock()
    dialer.dial.side_effect = ConnectionRefusedError("refused")
    adapter = DialerAdapter(dialer)

    with pytest.raises(NewConnectionError):
        _https_connection(adapter)._new_conn()


def test_adapters_do_not_share_dialers():
    first, second = MagicMock(), MagicMock()

    a = DialerAdapter(first).poolmanager.pool_classes_by_scheme["https"].ConnectionCls
    b = DialerAdapter(second).poolmanager.pool_classes_by_scheme["https"].ConnectionCls

    assert a.dialer is first
    assert b.dialer is second


def test_create_session_mounts_dialer():
    dialer = DirectDialer()

    session = create_session(dialer)

    assert session.trust_env is False
    for prefix in ("https://example.com/", "http://example.com/"):
        adapter = session.get_adapter(prefix)
        assert isinstance(adapter, DialerAdapter)
        assert adapter.dialer is dialer


def test_socket_timeout_passthrough():
    dialer = MagicMock()
    adapter = DialerAdapter(dialer)
    pool_cls = adapter.poolmanager.pool_classes_by_scheme["https"]
    conn = pool_cls.ConnectionCls("example.com", 443, timeout=3.5)

    conn._new_conn()

    assert dialer.dial.call_args[1]["timeout"] == 3.5
