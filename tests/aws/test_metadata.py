import socket
import threading
from http.client import RemoteDisconnected
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from gsmboot.aws.metadata import MetadataClient, MetadataError


def _response(body: bytes = b"", status: int = 200):
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.read.return_value = body
    resp.status = status
    return resp


def _http_error(code: int):
    return HTTPError("http://169.254.169.254", code, "error", {}, None)


@patch("gsmboot.aws.metadata.urlopen")
def test_get_sends_session_token(mock_urlopen):
    mock_urlopen.side_effect = [_response(b"tok-1"), _response(b"i-abc123")]
    client = MetadataClient()
    assert client.instance_id() == "i-abc123"

    token_request = mock_urlopen.call_args_list[0].args[0]
    assert token_request.get_method() == "PUT"
    assert token_request.full_url == "http://169.254.169.254/latest/api/token"
    request = mock_urlopen.call_args_list[1].args[0]
    assert request.full_url == "http://169.254.169.254/latest/meta-data/instance-id"
    assert request.get_header("X-aws-ec2-metadata-token") == "tok-1"


@patch("gsmboot.aws.metadata.urlopen")
def test_get_falls_back_without_token(mock_urlopen):
    mock_urlopen.side_effect = [_http_error(403), _response(b"54.1.2.3")]
    client = MetadataClient()
    assert client.public_ipv4() == "54.1.2.3"
    request = mock_urlopen.call_args_list[1].args[0]
    assert not request.has_header("X-aws-ec2-metadata-token")


@patch("gsmboot.aws.metadata.urlopen")
def test_get_uses_custom_base_url(mock_urlopen):
    mock_urlopen.side_effect = [URLError("refused"), _response(b"a|b")]
    client = MetadataClient("http://localhost:1338/")
    assert client.user_data() == "a|b"
    request = mock_urlopen.call_args_list[1].args[0]
    assert request.full_url == "http://localhost:1338/latest/user-data"


@patch("gsmboot.aws.metadata.urlopen")
def test_get_http_error_raises(mock_urlopen):
    mock_urlopen.side_effect = [_response(b"tok"), _http_error(404)]
    with pytest.raises(MetadataError, match="HTTP 404"):
        MetadataClient().user_data()


@patch("gsmboot.aws.metadata.urlopen")
def test_get_unreachable_raises(mock_urlopen):
    mock_urlopen.side_effect = URLError("timed out")
    with pytest.raises(MetadataError, match="timed out"):
        MetadataClient().region()


@patch("gsmboot.aws.metadata.urlopen")
def test_termination_status_not_found(mock_urlopen):
    mock_urlopen.side_effect = [_response(b"tok"), _http_error(404)]
    assert MetadataClient().termination_status() == 404


@patch("gsmboot.aws.metadata.urlopen")
def test_termination_status_notice(mock_urlopen):
    mock_urlopen.side_effect = [_response(b"tok"), _response(b"2026-10-19T12:00:00Z", status=200)]
    assert MetadataClient().termination_status() == 200
    request = mock_urlopen.call_args_list[1].args[0]
    assert request.full_url.endswith("/latest/meta-data/spot/termination-time")


@patch("gsmboot.aws.metadata.urlopen")
def test_termination_status_unreachable_raises(mock_urlopen):
    mock_urlopen.side_effect = [URLError("no route"), URLError("no route")]
    with pytest.raises(MetadataError):
        MetadataClient().termination_status()


@patch("gsmboot.aws.metadata.urlopen")
def test_get_dropped_connection_raises_metadata_error(mock_urlopen):
    mock_urlopen.side_effect = RemoteDisconnected("Remote end closed connection without response")
    with pytest.raises(MetadataError, match="RemoteDisconnected"):
        MetadataClient().instance_id()


@patch("gsmboot.aws.metadata.urlopen")
def test_status_read_timeout_raises_metadata_error(mock_urlopen):
    mock_urlopen.side_effect = [TimeoutError("timed out"), TimeoutError("timed out")]
    with pytest.raises(MetadataError, match="timed out"):
        MetadataClient().termination_status()


@patch("gsmboot.aws.metadata.urlopen")
def test_token_failure_of_any_kind_falls_back(mock_urlopen):
    mock_urlopen.side_effect = [RemoteDisconnected("closed"), _response(b"i-abc123")]
    assert MetadataClient().instance_id() == "i-abc123"


@pytest.fixture
def misbehaving_server():
    """Local TCP server that either drops each connection or never answers."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    held = []
    state = {"mode": "drop"}

    def _serve():
        while True:
            try:
                conn, _ = server.accept()
            except OSError:
                return
            if state["mode"] == "drop":
                try:
                    conn.recv(4096)
                finally:
                    conn.close()
            else:
                held.append(conn)

    threading.Thread(target=_serve, daemon=True).start()
    host, port = server.getsockname()
    yield state, f"http://{host}:{port}"
    server.close()
    for conn in held:
        conn.close()


def test_status_dropped_connection(misbehaving_server):
    state, url = misbehaving_server
    state["mode"] = "drop"
    with pytest.raises(MetadataError):
        MetadataClient(url, timeout=1).termination_status()


def test_status_unanswered_connection(misbehaving_server):
    state, url = misbehaving_server
    state["mode"] = "silent"
    with pytest.raises(MetadataError):
        MetadataClient(url, timeout=0.5).termination_status()


def test_get_unanswered_connection(misbehaving_server):
    state, url = misbehaving_server
    state["mode"] = "silent"
    with pytest.raises(MetadataError):
        MetadataClient(url, timeout=0.5).user_data()
