"""Client configuration tests."""

from turntracker.config import ClientConfig, get_config, reset_config


class TestClientConfig:
    def test_defaults(self, monkeypatch):
        for key in ("TURN_TRACKER_WS_URL", "TURN_TRACKER_RECONNECT_DELAY",
                    "TURN_TRACKER_MAX_RECONNECT", "TURN_TRACKER_REQUEST_TIMEOUT",
                    "TURN_TRACKER_ROOM_ID_LENGTH", "TURN_TRACKER_REQUEST_IDS"):
            monkeypatch.delenv(key, raising=False)
        config = ClientConfig()
        assert config.ws_url == "ws://localhost:8080/ws"
        assert config.reconnect_delay == 2.0
        assert config.max_reconnect_attempts == 5
        assert config.request_timeout == 10.0
        assert config.room_id_length == 6
        assert config.send_request_ids is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TURN_TRACKER_WS_URL", "wss://example.com/ws")
        monkeypatch.setenv("TURN_TRACKER_MAX_RECONNECT", "9")
        monkeypatch.setenv("TURN_TRACKER_ROOM_ID_LENGTH", "4")
        monkeypatch.setenv("TURN_TRACKER_REQUEST_IDS", "yes")
        config = ClientConfig.from_env()
        assert config.ws_url == "wss://example.com/ws"
        assert config.max_reconnect_attempts == 9
        assert config.room_id_length == 4
        assert config.send_request_ids is True

    def test_bad_env_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("TURN_TRACKER_RECONNECT_DELAY", "soon")
        monkeypatch.setenv("TURN_TRACKER_MAX_RECONNECT", "many")
        monkeypatch.setenv("TURN_TRACKER_REQUEST_IDS", "maybe")
        config = ClientConfig()
        assert config.reconnect_delay == 2.0
        assert config.max_reconnect_attempts == 5
        assert config.send_request_ids is False

    def test_get_config_is_cached(self, monkeypatch):
        reset_config()
        monkeypatch.setenv("TURN_TRACKER_REQUEST_TIMEOUT", "3")
        first = get_config()
        assert first.request_timeout == 3.0
        assert get_config() is first
        reset_config()
        assert get_config() is not first
        reset_config()
