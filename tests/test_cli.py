from __future__ import annotations

import json
from pathlib import Path

import pytest
import soundfile as sf  # type: ignore[import]

from layersynth.cli import build_parser, main


def _write(path: Path, document: object) -> Path:
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["render", "kick.json"])
    assert args.command == "render"
    assert args.output is None
    assert args.report is False


def test_render_with_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = _write(
        tmp_path / "echo.json",
        {"effects": {"delay": {"feedback": 0.95}}, "timing": {"duration": 0.2}},
    )
    assert main(["render", str(config), "--report", "--seed", "1"]) == 0
    out = capsys.readouterr().out
    assert "Corrections" in out
    assert "Wrote" in out
    data, _ = sf.read(tmp_path / "echo.wav")
    assert data.shape == (8_820, 2)


def test_render_reports_clean_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = _write(tmp_path / "clean.json", {"timing": {"duration": 0.1}})
    output = tmp_path / "out" / "clean.wav"
    output.parent.mkdir()
    assert main(["render", str(config), "-o", str(output), "--report"]) == 0
    assert "No corrections." in capsys.readouterr().out
    assert output.exists()


def test_invalid_config_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYERSYNTH_LOG_DIR", str(tmp_path / "logs"))
    config = tmp_path / "broken.json"
    config.write_text("{not json", encoding="utf-8")
    assert main(["render", str(config)]) == 1
    assert (tmp_path / "logs" / "layersynth.log").exists()
    assert not (tmp_path / "broken.wav").exists()


def test_batch_keeps_good_results(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAYERSYNTH_LOG_DIR", str(tmp_path / "logs"))
    good = _write(tmp_path / "good.json", {"timing": {"duration": 0.1}})
    bad = _write(tmp_path / "bad.json", {"layers": 5})
    output_dir = tmp_path / "renders"
    assert main(["batch", str(good), str(bad), "-d", str(output_dir), "--seed", "2"]) == 1
    assert (output_dir / "good.wav").exists()
    assert not (output_dir / "bad.wav").exists()
