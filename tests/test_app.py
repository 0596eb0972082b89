import pytest
from fastapi.testclient import TestClient

from conftest import SECRET, FakeConnector, make_config

from splithttp import __version__
from splithttp.server.app import create_app
from splithttp.server.services.relay import RelayEngine
from splithttp.tunnel.protocol import build_handshake

HANDSHAKE = build_handshake(SECRET, "example.com", 443)


def make_client(connector=None, **overrides):
    connector = connector or FakeConnector(initial=b"pong", eof=True)
    app = create_app(make_config(**overrides), RelayEngine(connector, connect_timeout=1.0))
    return TestClient(app), connector


def test_tunnel_round_trip():
    client, connector = make_client()
    with client:
        chunk0 = build_handshake(SECRET, "example.com", 443, payload=b"12345")
        response = client.post("/xblog/abc123/0", content=chunk0)
        assert response.status_code == 200

        response = client.get("/xblog/abc123")
        assert response.status_code == 200
        assert response.content == b"\x00\x00pong"
        assert response.headers["content-type"].startswith("application/grpc")
        assert response.headers["cache-control"] == "no-store"

        assert connector.calls == [("example.com", 443)]
        assert bytes(connector.writer.data) == b"12345"


def test_padding_header_length():
    client, _ = make_client()
    with client:
        response = client.post("/xblog/abc123/0", content=HANDSHAKE)

    assert 10 <= len(response.headers["x-padding"]) <= 20


def test_wrong_secret_is_generic_bad_request():
    client, connector = make_client()
    with client:
        response = client.post(
            "/xblog/abc123/0", content=build_handshake(bytes(16), "example.com", 443)
        )

    assert response.status_code == 400
    assert response.text == "Bad Request"
    assert connector.calls == []


def test_unknown_session_downlink_is_not_found():
    client, _ = make_client()
    with client:
        response = client.get("/xblog/nobody")

    assert response.status_code == 404
    assert response.text == "Not Found"


def test_sequence_gap_tears_session_down():
    client, _ = make_client()
    with client:
        assert client.post("/xblog/abc123/0", content=HANDSHAKE).status_code == 200
        assert client.post("/xblog/abc123/2", content=b"x").status_code == 400
        assert client.get("/xblog/abc123").status_code == 404


def test_duplicate_chunk_is_ok():
    client, connector = make_client()
    with client:
        assert client.post("/xblog/abc123/0", content=HANDSHAKE).status_code == 200
        assert client.post("/xblog/abc123/0", content=HANDSHAKE).status_code == 200

    assert len(connector.calls) == 1


def test_unreachable_upstream_is_bad_gateway():
    client, _ = make_client(FakeConnector(error=ConnectionRefusedError("refused")))
    with client:
        response = client.post("/xblog/abc123/0", content=HANDSHAKE)

    assert response.status_code == 502
    assert response.text == "Bad Gateway"


@pytest.mark.parametrize("seq", ["abc", "-1", "1.5"])
def test_malformed_sequence_number(seq):
    client, _ = make_client()
    with client:
        response = client.post(f"/xblog/abc123/{seq}", content=b"x")

    assert response.status_code == 400
    assert response.text == "Bad Request"


def test_oversized_chunk_is_rejected():
    client, connector = make_client(MAX_CHUNK_KIB=1)
    with client:
        response = client.post("/xblog/abc123/0", content=HANDSHAKE + b"x" * 2048)
        assert response.status_code == 400
        assert client.get("/xblog/abc123").status_code == 404

    assert connector.calls == []


def test_delete_closes_session():
    client, connector = make_client(FakeConnector())
    with client:
        client.post("/xblog/abc123/0", content=HANDSHAKE)

        assert client.delete("/xblog/abc123").status_code == 200
        assert client.delete("/xblog/abc123").status_code == 404
        assert connector.writer.close_calls == 1


def test_chunk_after_close_is_not_found():
    client, connector = make_client(FakeConnector())
    with client:
        assert client.post("/xblog/abc123/0", content=HANDSHAKE).status_code == 200
        assert client.delete("/xblog/abc123").status_code == 200

        response = client.post("/xblog/abc123/1", content=b"x")
        assert response.status_code == 404
        assert response.text == "Not Found"

        assert client.post("/xblog/other/7", content=b"x").status_code == 404
        assert client.get("/health").json()["active_sessions"] == 0


def test_rejected_handshake_leaves_no_session():
    client, _ = make_client()
    with client:
        client.post(
            "/xblog/abc123/0", content=build_handshake(bytes(16), "example.com", 443)
        )

        assert client.get("/health").json()["active_sessions"] == 0
        assert client.get("/xblog/abc123").status_code == 404


def test_unknown_path_is_not_found():
    client, _ = make_client()
    with client:
        response = client.get("/elsewhere/abc123")

    assert response.status_code == 404
    assert response.text == "Not Found"


def test_root_base_path():
    client, _ = make_client(XHTTP_PATH="/")
    with client:
        assert client.post("/abc123/0", content=HANDSHAKE).status_code == 200
        assert client.get("/abc123").content == b"\x00\x00pong"


def test_health_reports_sessions():
    client, _ = make_client(FakeConnector())
    with client:
        client.post("/xblog/abc123/0", content=HANDSHAKE)
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "version": __version__,
        "active_sessions": 1,
    }


def test_invalid_config_is_refused():
    with pytest.raises(ValueError):
        create_app(make_config(SECRET=""))
