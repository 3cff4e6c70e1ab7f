import pytest
import io
import json
import logging

from livesync.__main__ import parse_args, load_config, main
from livesync.core.logging_setup import configure_logging


class TestLoadConfig:
    def test_overrides(self, tmp_path, app_dir):
        config_path = tmp_path / "livesync.json"
        config_path.write_text(json.dumps({'port': 9000}))

        args = parse_args(["--config", str(config_path), "--directory", str(app_dir),
                           "--port", "9100", "--http-port", "3100", "--verbose"])
        config = load_config(args)

        assert config.port == 9100
        assert config.directory == str(app_dir)
        assert config.http.port == 3100
        assert config.http.root == str(app_dir)
        assert config.verbose is True
        assert list(config.watch) == [str(app_dir)]

    def test_missing_config_file_uses_defaults(self, tmp_path):
        config = load_config(parse_args(["--config", str(tmp_path / "absent.json")]))
        assert config.port == 8888
        assert config.watch == {}

    def test_invalid_config_exit_code(self, tmp_path, capsys):
        config_path = tmp_path / "livesync.json"
        config_path.write_text(json.dumps({'watch': ['not', 'a', 'mapping']}))

        assert main(["--config", str(config_path)]) == 2
        assert "Invalid configuration" in capsys.readouterr().err


class TestLogging:
    def test_configure_logging(self):
        stream = io.StringIO()
        logger = configure_logging("warning", stream=stream)

        logging.getLogger("livesync.core").info("hidden")
        logging.getLogger("livesync.core").warning("shown")

        assert logger.level == logging.WARNING
        assert "shown" in stream.getvalue()
        assert "hidden" not in stream.getvalue()
        assert len(logger.handlers) == 1

    def test_verbose_forces_debug(self):
        assert configure_logging("ERROR", verbose=True, stream=io.StringIO()).level == logging.DEBUG

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("chatty")
