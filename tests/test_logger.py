import json

import pytest

from douyin_social.logger import LogConfig, init_logger


def _settings(path, level=-1, mode="debug"):
    return {
        "settings": {
            "log": {
                "level": level,
                "path": str(path),
                "maxSize": 1,
                "maxAge": 7,
                "maxBackups": 3,
                "compress": False,
                "mode": mode,
            }
        }
    }


@pytest.fixture
def make_logger():
    created = []

    def factory(mode, settings):
        logger = init_logger(mode, settings)
        created.append(logger)
        return logger

    yield factory
    for logger in created:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_config_from_settings(tmp_path):
    path = tmp_path / "app.log"
    config = LogConfig.from_settings(_settings(path, level=1, mode="release"))
    assert config.file_name == str(path)
    assert config.level == 1
    assert config.max_size == 1
    assert config.max_age == 7
    assert config.max_backups == 3
    assert config.compress is False
    assert config.mode == "release"


def test_config_missing_section_defaults():
    config = LogConfig.from_settings({})
    assert config == LogConfig()


def test_config_parses_string_values(tmp_path):
    settings = {"settings": {"log": {"level": "2", "compress": "true"}}}
    config = LogConfig.from_settings(settings)
    assert config.level == 2
    assert config.compress is True


def test_release_writes_json_to_file_only(tmp_path, capsys, make_logger):
    path = tmp_path / "app.log"
    logger = make_logger("release", _settings(path, level=0))
    logger.info("hello", extra={"fields": {"user_id": 7}})
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert len(records) == 1
    assert records[0]["msg"] == "hello"
    assert records[0]["level"] == "INFO"
    assert records[0]["user_id"] == 7
    assert "time" in records[0] and "caller" in records[0]
    assert "hello" not in capsys.readouterr().out


def test_debug_mode_writes_console_lines(tmp_path, capsys, make_logger):
    path = tmp_path / "app.log"
    logger = make_logger("debug", _settings(path, level=-1))
    logger.info("visible")
    lines = path.read_text(encoding="utf-8").splitlines()
    assert "\tDEBUG\t" in lines[0]
    assert "日志模块初始化成功" in lines[0]
    assert "\tINFO\t" in lines[1] and lines[1].split("\t")[3] == "visible"
    assert "visible" in capsys.readouterr().out


def test_level_filters_lower_records(tmp_path, make_logger):
    path = tmp_path / "app.log"
    logger = make_logger("release", _settings(path, level=1))
    logger.info("dropped")
    logger.warning("kept")
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [record["msg"] for record in records] == ["kept"]
    assert records[0]["level"] == "WARN"


def test_mode_argument_overrides_settings(tmp_path, make_logger):
    path = tmp_path / "app.log"
    logger = make_logger("release", _settings(path, level=0, mode="debug"))
    logger.error("boom")
    record = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
    assert record["msg"] == "boom"
    assert record["level"] == "ERROR"