from pathlib import Path

import pytest
from pydantic import ValidationError

from pipexec.settings import CommandSpec, LogLevel, StartConfig, load_settings


def _write_tmp(tmp_path: Path, text: str, name: str = "config.yaml") -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_commands_and_start_defaults_are_loaded(tmp_path: Path) -> None:
    cfg = """
commands:
  list:
    program: ls
    args: ["-la"]
    timeout_s: 5
start:
  capture: true
  scan_stdout: true
  encoding: cp866
logging:
  default_level: debug
"""
    settings = load_settings(_write_tmp(tmp_path, cfg))

    spec = settings.commands["list"]
    assert spec.program == "ls"
    assert spec.args == ("-la",)
    assert spec.timeout_s == 5
    assert spec.label == "ls"
    assert settings.start.capture
    assert settings.start.scan_stdout
    assert settings.start.encoding == "cp866"
    assert settings.logging is not None
    assert settings.logging.default_level is LogLevel.debug


def test_variables_and_env_are_interpolated(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("PIPEXEC_DIR", "/tmp/work")
    cfg = """
variables:
  GREETING: hello
commands:
  greet:
    program: echo
    args: ["${GREETING} world", "$${GREETING}"]
    cwd: ${env:PIPEXEC_DIR}
"""
    settings = load_settings(str(_write_tmp(tmp_path, cfg)))

    spec = settings.commands["greet"]
    assert spec.args == ("hello world", "${GREETING}")
    assert spec.cwd == Path("/tmp/work")


def test_unknown_placeholders_are_left_untouched(tmp_path: Path) -> None:
    cfg = """
commands:
  raw:
    program: echo
    args: ["${env:PIPEXEC_SURELY_UNSET_VAR}"]
"""
    settings = load_settings(_write_tmp(tmp_path, cfg))

    assert settings.commands["raw"].args == ("${env:PIPEXEC_SURELY_UNSET_VAR}",)


def test_json5_config(tmp_path: Path) -> None:
    cfg = """
{
  // comments are allowed
  commands: { hi: { program: "echo", args: ["hi"] } },
}
"""
    settings = load_settings(_write_tmp(tmp_path, cfg, "config.json5"))

    assert settings.commands["hi"].args == ("hi",)


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    settings = load_settings(_write_tmp(tmp_path, ""))

    assert settings.commands == {}
    assert not settings.start.wait
    assert settings.process.backend == "local"


def test_unsupported_extension_and_root_type(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_settings(_write_tmp(tmp_path, "x = 1", "config.toml"))
    with pytest.raises(ValueError):
        load_settings(_write_tmp(tmp_path, "- a\n- b\n"))


def test_unknown_encoding_is_rejected() -> None:
    with pytest.raises(ValidationError):
        StartConfig(encoding="no-such-codec")


def test_command_spec_is_frozen_and_validated() -> None:
    spec = CommandSpec(program="echo", args=["a"])
    with pytest.raises(ValidationError):
        spec.program = "other"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        CommandSpec(program="")
    with pytest.raises(ValidationError):
        CommandSpec(program="sleep", timeout_s=-1)
    assert CommandSpec(program="echo", name="greeter").label == "greeter"
