# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring,protected-access
# pylint: disable=unused-argument,too-few-public-methods,no-member,use-implicit-booleaness-not-comparison,line-too-long
# pylint: disable=invalid-name,too-many-statements,too-many-instance-attributes,wrong-import-position,wrong-import-order
import asyncio
from types import SimpleNamespace

import mqtt_client


class DummyClient:
    def __init__(self, rc=0):
        self.rc = rc
        self.subscribed = []
        self.published = []

    def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))
        return (0, 1)

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self.rc)

    def loop_stop(self):
        return None

    def disconnect(self):
        return None


class DummyPahoClient(DummyClient):
    instances = []

    def __init__(self, **kwargs):
        super().__init__()
        self.kwargs = kwargs
        self.credentials = None
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None
        DummyPahoClient.instances.append(self)

    def username_pw_set(self, username, password):
        self.credentials = (username, password)

    def connect(self, host, port, keepalive):
        self.target = (host, port, keepalive)

    def loop_start(self):
        self.on_connect(self, None, {}, 0)


def _make_client(connected=True, rc=0):
    client = mqtt_client.MQTTClient(host="broker", port=1883, client_id="test")
    client.client = DummyClient(rc=rc)
    client.connected = connected
    return client


def _msg(topic, payload=b"x"):
    return SimpleNamespace(topic=topic, payload=payload, qos=0, retain=0)


def test_add_handler_subscribes_when_connected():
    client = _make_client()
    client.add_message_handler(topic="site/lantai1/status", handler=lambda *a: None, qos=0)
    client.add_message_handler(topic="site/+/health", handler=lambda *a: None, qos=1)
    assert client.client.subscribed == [("site/lantai1/status", 0), ("site/+/health", 1)]
    assert "site/lantai1/status" in client._message_handlers
    assert client._wildcard_handlers[0][0] == "site/+/health"


def test_add_handler_offline_defers_subscribe():
    client = _make_client(connected=False)
    client.add_message_handler(topic="site/lantai1/status", handler=lambda *a: None)
    assert client.client.subscribed == []

    client._on_connect(client.client, None, {}, 0)
    assert client.connected is True
    assert client.client.subscribed == [("site/lantai1/status", 0)]


def test_on_message_routes_exact_and_wildcard():
    client = _make_client()
    seen = []
    client.add_message_handler(topic="site/lantai1/status", handler=lambda t, p, q, r: seen.append(("exact", t, p)))
    client.add_message_handler(topic="site/#", handler=lambda t, p, q, r: seen.append(("wild", t, p)))

    client._on_message(None, None, _msg("site/lantai1/status", b"ACK"))
    client._on_message(None, None, _msg("site/lantai2/health", b"PING"))
    client._on_message(None, None, _msg("other/topic"))

    assert seen == [
        ("exact", "site/lantai1/status", b"ACK"),
        ("wild", "site/lantai1/status", b"ACK"),
        ("wild", "site/lantai2/health", b"PING"),
    ]
    assert client.messages_received == 3


def test_handler_exception_does_not_stop_others():
    client = _make_client()
    seen = []

    def boom(*_args):
        raise RuntimeError("boom")

    client.add_message_handler(topic="site/lantai1/status", handler=boom)
    client.add_message_handler(topic="site/+/status", handler=lambda *a: seen.append(a[0]))
    client._on_message(None, None, _msg("site/lantai1/status"))
    assert seen == ["site/lantai1/status"]


def test_publish_raw_success_and_failures():
    client = _make_client()
    assert asyncio.run(client.publish_raw(topic="t", payload="buka,AA")) is True
    assert client.client.published == [("t", "buka,AA", 0, False)]

    client.client.rc = 4
    assert asyncio.run(client.publish_raw(topic="t", payload="buka,AA")) is False

    client.connected = False
    assert asyncio.run(client.publish_raw(topic="t", payload="buka,AA")) is False

    stats = client.get_stats()
    assert stats["mqtt_publish_count"] == 3
    assert stats["mqtt_publish_failed"] == 2
    assert stats["mqtt_connected"] is False


def test_publish_raw_exception_is_reported():
    client = _make_client()

    def raise_publish(*_args, **_kwargs):
        raise ValueError("bad payload")

    client.client.publish = raise_publish
    assert asyncio.run(client.publish_raw(topic="t", payload="x")) is False
    assert client.last_error_msg == "bad payload"


def test_connect_refused_records_error():
    client = _make_client(connected=False)
    client._on_connect(client.client, None, {}, 5)
    assert client.connected is False
    assert client.last_error_msg == "Not authorized"

    client.connected = True
    client._on_disconnect(client.client, None, 7)
    assert client.connected is False
    assert "rc=7" in client.last_error_msg


def test_connect_uses_paho_client(monkeypatch):
    DummyPahoClient.instances = []
    monkeypatch.setattr(mqtt_client.mqtt, "Client", DummyPahoClient)
    monkeypatch.setattr(mqtt_client, "MQTT_USERNAME", "user")
    monkeypatch.setattr(mqtt_client, "MQTT_PASSWORD", "secret")

    client = mqtt_client.MQTTClient(host="broker", port=1884, client_id="hub")
    client.add_message_handler(topic="site/lantai1/health", handler=lambda *a: None)

    assert client.connect(timeout=1) is True
    paho = DummyPahoClient.instances[0]
    assert paho.kwargs["client_id"] == "hub"
    assert paho.credentials == ("user", "secret")
    assert paho.target == ("broker", 1884, 60)
    assert paho.subscribed == [("site/lantai1/health", 0)]
    assert client.is_ready() is True

    client.disconnect()
    assert client.client is None
    assert client.is_ready() is False


def test_publish_stats_log_with_interval_of_one(monkeypatch):
    monkeypatch.setattr(mqtt_client, "MQTT_PUBLISH_LOG_EVERY", 1)
    client = _make_client()
    assert asyncio.run(client.publish_raw(topic="t", payload="a")) is True
    assert asyncio.run(client.publish_raw(topic="t", payload="b")) is True
    assert client.get_stats()["mqtt_publish_failed"] == 0
