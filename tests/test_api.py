import pytest
import redis
from fastapi.testclient import TestClient

from clipsync_relay.api.main import create_app, main, parse_args
from clipsync_relay.api.registry import FUNCTIONS, MUTATION, QUERY
from clipsync_relay.config import RedisConfig, RelayConfig
from clipsync_relay.services.relay_service import RelayService


@pytest.fixture
def client(relay):
    return TestClient(create_app(relay))


def _call(client, name, **args):
    return client.post(f"/api/{name}", json=args)


def _create(client, android="A1", mac="M1"):
    response = _call(
        client, "pairings.create",
        androidDeviceId=android, androidDeviceName="Phone",
        macDeviceId=mac, macDeviceName="Laptop",
    )
    assert response.status_code == 200
    return response.json()["value"]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == "running"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_functions_lists_every_operation(client):
    listed = client.get("/functions").json()
    assert listed == {
        "pairings.create": MUTATION,
        "pairings.get": QUERY,
        "pairings.getByIdString": QUERY,
        "pairings.getByMacId": QUERY,
        "pairings.watchForPairing": QUERY,
        "pairings.exists": QUERY,
        "pairings.remove": MUTATION,
        "clipboard.send": MUTATION,
        "clipboard.getLatest": QUERY,
        "clipboard.getHistory": QUERY,
        "clipboard.clear": MUTATION,
    }
    assert set(listed) == set(FUNCTIONS)


def test_pairing_flow_over_http(client):
    pairing_id = _create(client)

    pairing = _call(client, "pairings.getByMacId", macDeviceId="M1").json()["value"]
    assert pairing["id"] == pairing_id
    assert pairing["status"] == "active"
    assert pairing["macDeviceName"] == "Laptop"

    watched = _call(client, "pairings.watchForPairing", macDeviceId="M1", sinceTimestamp=0).json()
    assert watched["value"]["id"] == pairing_id

    assert _call(client, "pairings.get", pairingId=pairing_id).json()["value"]["id"] == pairing_id
    assert _call(client, "pairings.exists", pairingId=pairing_id).json() == {"ok": True, "value": True}

    removed = _call(client, "pairings.remove", pairingId=pairing_id)
    assert removed.json() == {"ok": True, "value": None}

    assert _call(client, "pairings.exists", pairingId=pairing_id).json()["value"] is False
    assert _call(client, "pairings.getByIdString", pairingId=pairing_id).json()["value"] is None


def test_clipboard_flow_over_http(client):
    pairing_id = _create(client)

    first = _call(client, "clipboard.send", pairingId=pairing_id, content="ciphertext1",
                  sourceDeviceId="A1", type="text").json()["value"]
    second = _call(client, "clipboard.send", pairingId=pairing_id, content="ciphertext2",
                   sourceDeviceId="M1", type="text").json()["value"]

    latest = _call(client, "clipboard.getLatest", pairingId=pairing_id).json()["value"]
    assert latest["id"] == second
    assert latest["content"] == "ciphertext2"

    history = _call(client, "clipboard.getHistory", pairingId=pairing_id, limit=10).json()["value"]
    assert [item["id"] for item in history] == [second, first]

    assert _call(client, "clipboard.clear", pairingId=pairing_id).json()["value"] == 2
    assert _call(client, "clipboard.getHistory", pairingId=pairing_id).json()["value"] == []


def test_send_requires_type(client):
    pairing_id = _create(client)
    response = _call(client, "clipboard.send", pairingId=pairing_id, content="c", sourceDeviceId="A1")
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidArguments"
    assert "type" in response.json()["message"]
    assert _call(client, "clipboard.getLatest", pairingId=pairing_id).json()["value"] is None


def test_reads_with_stale_ids_degrade_to_empty(client):
    for name in ("pairings.getByIdString", "clipboard.getLatest"):
        response = _call(client, name, pairingId="garbage")
        assert response.status_code == 200
        assert response.json()["value"] is None
    assert _call(client, "clipboard.getHistory", pairingId="garbage").json()["value"] == []
    assert _call(client, "clipboard.clear", pairingId="garbage").json()["value"] == 0
    assert _call(client, "pairings.remove", pairingId="garbage").json()["ok"] is True


def test_send_errors_map_to_status_codes(client):
    response = _call(client, "clipboard.send", pairingId="garbage", content="c",
                     sourceDeviceId="A1", type="text")
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidReference"

    pairing_id = _create(client)
    _call(client, "pairings.remove", pairingId=pairing_id)
    response = _call(client, "clipboard.send", pairingId=pairing_id, content="c",
                     sourceDeviceId="A1", type="text")
    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "NotFound", "message": "Pairing not found"}


def test_typed_get_rejects_malformed_id(client):
    response = _call(client, "pairings.get", pairingId="garbage")
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidReference"


def test_oversized_content_is_rejected(relay, client):
    pairing_id = _create(client)
    content = "x" * (relay.relay_config.max_content_bytes + 1)
    response = _call(client, "clipboard.send", pairingId=pairing_id, content=content,
                     sourceDeviceId="A1", type="text")
    assert response.status_code == 413
    assert response.json()["error"] == "PayloadTooLarge"


def test_oversized_request_body_is_refused_before_dispatch(manager, monkeypatch):
    relay = RelayService(manager=manager, config=RedisConfig(key_prefix="test"),
                         relay_config=RelayConfig(max_content_bytes=16))
    client = TestClient(create_app(relay))
    dispatched = []
    monkeypatch.setattr("clipsync_relay.api.main.call", lambda *args: dispatched.append(args))

    body = b'{"content": "' + b"x" * (relay.relay_config.max_request_bytes + 1) + b'"}'
    response = client.post("/api/clipboard.send", content=body,
                           headers={"content-type": "application/json"})

    assert response.status_code == 413
    assert response.json()["error"] == "PayloadTooLarge"
    assert dispatched == []


def test_invalid_arguments(client):
    response = _call(client, "pairings.create", androidDeviceId="A1")
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidArguments"
    assert "macDeviceId" in body["message"]


def test_validation_message_does_not_echo_content(client):
    pairing_id = _create(client)
    response = client.post("/api/clipboard.send", json={
        "pairingId": pairing_id, "content": ["secret-ciphertext"], "sourceDeviceId": "A1",
    })
    assert response.status_code == 400
    assert "secret-ciphertext" not in response.text


def test_non_json_body(client):
    response = client.post("/api/pairings.exists", content=b"{not json",
                           headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidArguments"


def test_unknown_function(client):
    response = _call(client, "pairings.destroyEverything")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_storage_failure_maps_to_503(relay, client, monkeypatch):
    def broken(*args, **kwargs):
        raise redis.ConnectionError("connection reset")

    monkeypatch.setattr(relay.manager, "query_by_index", broken)

    response = _call(client, "pairings.getByMacId", macDeviceId="M1")
    assert response.status_code == 503
    assert response.json()["error"] == "StorageUnavailable"


def test_live_query_pushes_changes(relay, client):
    pairing_id = _create(client)

    with client.websocket_connect("/live") as websocket:
        websocket.send_json({"name": "clipboard.getLatest", "args": {"pairingId": pairing_id}})
        assert websocket.receive_json() == {"ok": True, "value": None}

        item_id = relay.clipboard.send(pairing_id, "ciphertext", "A1", "text")

        pushed = websocket.receive_json()
        assert pushed["ok"] is True
        assert pushed["value"]["id"] == item_id


def test_live_watch_for_pairing(relay, client):
    with client.websocket_connect("/live") as websocket:
        websocket.send_json({
            "name": "pairings.watchForPairing",
            "args": {"macDeviceId": "M1", "sinceTimestamp": 0},
        })
        assert websocket.receive_json()["value"] is None

        pairing_id = relay.pairings.create("A1", "Phone", "M1", "Laptop")

        assert websocket.receive_json()["value"]["id"] == pairing_id


def test_live_rejects_mutations_and_garbage(client):
    with client.websocket_connect("/live") as websocket:
        websocket.send_json({"name": "clipboard.clear", "args": {"pairingId": "x"}})
        assert websocket.receive_json()["error"] == "InvalidArguments"

        websocket.send_text("not json")
        assert websocket.receive_json()["error"] == "InvalidArguments"

        websocket.send_json({"name": "nope.nothing", "args": {}})
        assert websocket.receive_json()["error"] == "NotFound"

        websocket.send_json({"name": "pairings.exists", "args": {"pairingId": "x"}})
        assert websocket.receive_json() == {"ok": True, "value": False}


def test_live_rejects_binary_frames(client):
    with client.websocket_connect("/live") as websocket:
        websocket.send_bytes(b"\x00\x01")
        assert websocket.receive_json()["error"] == "InvalidArguments"

        websocket.send_json({"name": "pairings.exists", "args": {"pairingId": "x"}})
        assert websocket.receive_json() == {"ok": True, "value": False}


def test_parse_args_defaults(monkeypatch):
    monkeypatch.delenv("API_PORT", raising=False)
    monkeypatch.delenv("API_HOST", raising=False)
    args = parse_args([])
    assert args.port == 3001
    assert args.host == "0.0.0.0"
    assert args.redis_uri is None
    assert args.verbose is False


def test_main_serves_app(relay, monkeypatch):
    configs = []
    served = {}

    def fake_relay_service(config):
        configs.append(config)
        return relay

    monkeypatch.setattr("clipsync_relay.api.main.RelayService", fake_relay_service)
    monkeypatch.setattr(
        "clipsync_relay.api.main.uvicorn.run",
        lambda app, host, port: served.update(app=app, host=host, port=port),
    )

    main(["--host", "127.0.0.1", "--port", "9000", "--redis-uri", "redis://cache:6379/4"])

    assert served["host"] == "127.0.0.1"
    assert served["port"] == 9000
    assert served["app"].state.relay is relay
    assert configs[0].host == "cache"
    assert configs[0].db == 4


def test_main_exits_on_bad_redis_uri(monkeypatch):
    monkeypatch.setattr("clipsync_relay.api.main.uvicorn.run", lambda *a, **k: None)
    with pytest.raises(SystemExit):
        main(["--redis-uri", "http://nope"])
