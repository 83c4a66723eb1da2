import logging

import pytest

from axispositions import main as cli
from axispositions.config import (
    COIL_ANGLE_MAX,
    DEFAULT_OUTPUT_PATH,
    ENV_COIL_ANGLE_MAX,
    ENV_COIL_MAP,
    ENV_LOG_FILE,
    ENV_LOG_LEVEL,
    ENV_OUTPUT,
    RunSettings,
)
from axispositions.model.coil import FeatureCode
from axispositions.logging_config import setup_logging
from axispositions.model.io import IOManager

from conftest import two_layer_rows


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    for name in (ENV_COIL_MAP, ENV_OUTPUT, ENV_COIL_ANGLE_MAX, ENV_LOG_LEVEL, ENV_LOG_FILE):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def coil_env(tmp_path, monkeypatch):
    lines = ["coilAngle,featureCode,hqp,layer,turn,azimuth,radius"]
    for r in two_layer_rows():
        code = "" if r.feature_code == FeatureCode.NONE else str(r.feature_code)
        lines.append(f"{r.angle:g},{code},{r.hqp},{r.layer},{r.turn},{r.azimuth:g},{r.radius:g}")
    coil_map = tmp_path / "coil.csv"
    coil_map.write_text("\n".join(lines) + "\n", encoding="utf-8")

    output = str(tmp_path / "positions.h5")
    monkeypatch.setenv(ENV_COIL_MAP, str(coil_map))
    monkeypatch.setenv(ENV_OUTPUT, output)
    monkeypatch.setenv(ENV_COIL_ANGLE_MAX, "9990")
    return output


def test_settings_defaults():
    settings = RunSettings.from_env()
    assert settings.output_path == DEFAULT_OUTPUT_PATH
    assert settings.coil_angle_max == COIL_ANGLE_MAX
    assert settings.log_level == logging.INFO


def test_settings_reject_bad_log_level(monkeypatch):
    monkeypatch.setenv(ENV_LOG_LEVEL, "chatty")
    with pytest.raises(ValueError):
        RunSettings.from_env()


def test_no_arguments_is_usage_error():
    assert cli.main([]) == cli.EXIT_USAGE


def test_unknown_switch_is_usage_error():
    with pytest.raises(SystemExit) as exc:
        cli.main(["--bogus"])
    assert exc.value.code == cli.EXIT_USAGE


def test_bad_environment_is_usage_error(monkeypatch):
    monkeypatch.setenv(ENV_COIL_ANGLE_MAX, "lots")
    assert cli.main(["-p"]) == cli.EXIT_USAGE


def test_positions_and_events(coil_env):
    assert cli.main(["-p", "-e"]) == cli.EXIT_OK

    positions = IOManager.load_positions(coil_env)
    assert positions.first_angle == -140
    anchors = IOManager.load_event_anchors(coil_env)
    assert anchors.new_hqp_angles == (-140,)
    assert anchors.new_layer_angles == (4965,)


def test_positions_replace_previous_table(coil_env):
    assert cli.main(["--positions"]) == cli.EXIT_OK
    first = IOManager.load_positions(coil_env)
    assert cli.main(["--positions"]) == cli.EXIT_OK
    assert IOManager.load_positions(coil_env) == first


def test_missing_coil_map_fails_run(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_COIL_MAP, str(tmp_path / "missing.csv"))
    monkeypatch.setenv(ENV_OUTPUT, str(tmp_path / "positions.h5"))
    assert cli.main(["-p"]) == cli.EXIT_FAILED


def test_events_need_stored_positions(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_OUTPUT, str(tmp_path / "positions.h5"))
    assert cli.main(["-e"]) == cli.EXIT_FAILED


def test_setup_logging_replaces_handlers(tmp_path):
    log_file = tmp_path / "run.log"
    logger = setup_logging(level=logging.DEBUG, log_file=str(log_file))
    try:
        assert len(logger.handlers) == 2
        logger = setup_logging(level=logging.WARNING)
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert log_file.exists()
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
