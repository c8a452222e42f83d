from unittest.mock import patch

from aichat.config import ChatConfig
import server


def test_parse_args_defaults():
    args = server.parse_args([])

    assert args.host == "0.0.0.0"
    assert args.port == 8010
    assert args.database_url is None
    assert args.max_memory is None


def test_main_applies_cli_overrides(tmp_path):
    config = ChatConfig()

    with patch("server.setup_logging"), patch("server.load_config", return_value=config), patch(
        "server.create_app", return_value="app"
    ) as create_app, patch("server.uvicorn.run") as run:
        server.main(
            [
                "--port", "9000",
                "--log_dir", str(tmp_path),
                "--database_url", "sqlite:///override.db",
                "--default_service", " Ramses ",
                "--api_path", "/chat",
                "--max_memory", "4",
                "--char_limit", "500",
                "--session_ttl", "120",
            ]
        )

    create_app.assert_called_once_with(config)
    run.assert_called_once_with("app", host="0.0.0.0", port=9000)
    assert config.log_dir == str(tmp_path)
    assert config.database_url == "sqlite:///override.db"
    assert config.default_service == "ramses"
    assert config.api_path == "/chat"
    assert config.default_max_memory == 4
    assert config.char_limit == 500
    assert config.session_ttl_seconds == 120


def test_main_keeps_loaded_values_without_flags():
    config = ChatConfig(database_url="sqlite:///from-env.db", default_max_memory=7)

    with patch("server.setup_logging"), patch("server.load_config", return_value=config), patch(
        "server.create_app", return_value="app"
    ), patch("server.uvicorn.run"):
        server.main([])

    assert config.database_url == "sqlite:///from-env.db"
    assert config.default_max_memory == 7
    assert config.api_path == "/api"
