from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest

from src.sieve import ConfigError, PipelineError, PipelineStatus, ProgressEvent, SieveResult

RUNNER_PATH = Path(__file__).resolve().parents[1] / "scripts" / "sieve_run.py"
MODULE_NAME = "sieve_run_test_module"
SPEC = importlib.util.spec_from_file_location(MODULE_NAME, RUNNER_PATH)
runner = importlib.util.module_from_spec(SPEC)
assert SPEC.loader is not None
sys.modules[MODULE_NAME] = runner
SPEC.loader.exec_module(runner)  # type: ignore[attr-defined]


def _result() -> SieveResult:
    return SieveResult(
        success=True,
        original_frames_count=12,
        pruned_frames_count=4,
        retained_ids=[0, 3, 7, 11],
        scene_ranks={0: 1, 3: 2, 7: 3, 11: 4},
        output_files=["out/scene_001.jpg"],
        execution_time_ms=250,
    )


class FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> dict:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise runner.requests.HTTPError(f"HTTP {self.status_code}")


def test_build_config_maps_arguments() -> None:
    args = runner.parse_args(["clip.mp4", "-n", "8", "-t", "0.3", "--fps", "2", "-s", "480", "--worker"])
    config = runner.build_config(args)

    assert config.count == 8
    assert config.threshold == 0.3
    assert config.execution == "process"
    assert config.extractor.fps == 2.0
    assert config.extractor.scale == 480
    assert config.extractor.max_frames == 300
    assert config.output_path is None


def test_main_runs_locally_and_prints_summary(monkeypatch, capsys) -> None:
    captured = {}

    def fake_run_sieve(source, config, on_progress=None):
        captured["source"] = source
        captured["config"] = config
        if on_progress:
            on_progress(ProgressEvent(phase=PipelineStatus.EXTRACTING, percent=0.0))
        return _result()

    monkeypatch.delenv("SIEVE_SERVICE_URL", raising=False)
    monkeypatch.setattr(runner, "run_sieve", fake_run_sieve)
    monkeypatch.setattr(runner, "configure_logging", lambda debug=False: None)

    exit_code = runner.main(["clip.mp4", "-o", "out"])

    assert exit_code == 0
    assert captured["source"].path == Path("clip.mp4")
    assert captured["config"].output_path == Path("out")
    output = capsys.readouterr().out
    assert "Done! 12 frames -> 4 scenes (250 ms)" in output
    assert "out/scene_001.jpg" in output


def test_main_reports_config_errors_with_exit_code_2(monkeypatch, capsys) -> None:
    def fake_run_sieve(source, config, on_progress=None):
        raise ConfigError("count must be a positive integer, received: 0")

    monkeypatch.delenv("SIEVE_SERVICE_URL", raising=False)
    monkeypatch.setattr(runner, "run_sieve", fake_run_sieve)
    monkeypatch.setattr(runner, "configure_logging", lambda debug=False: None)

    assert runner.main(["clip.mp4", "-n", "0"]) == 2
    assert "count must be a positive integer" in capsys.readouterr().err


def test_main_reports_pipeline_errors_with_phase(monkeypatch, capsys) -> None:
    def fake_run_sieve(source, config, on_progress=None):
        raise PipelineError(PipelineStatus.EXTRACTING, "EXTRACTING failed: ffmpeg exited 1")

    monkeypatch.delenv("SIEVE_SERVICE_URL", raising=False)
    monkeypatch.setattr(runner, "run_sieve", fake_run_sieve)
    monkeypatch.setattr(runner, "configure_logging", lambda debug=False: None)

    assert runner.main(["clip.mp4"]) == 1
    assert "(phase: EXTRACTING)" in capsys.readouterr().err


def test_run_remote_posts_overrides_and_prints_result(monkeypatch, capsys, tmp_path: Path) -> None:
    posted = {}

    def fake_post(url, json=None, timeout=None):
        posted["url"] = url
        posted["payload"] = json
        return FakeResponse({"job_id": "abc", "status": "completed"})

    def fake_get(url, timeout=None):
        assert url == "http://sieve.local/result/abc"
        return FakeResponse(
            {
                "summary": {"original_frames": 30, "retained_frames": 5, "execution_time_ms": 900},
                "scenes": [{"rank": 1, "frame_id": 0, "output_file": "/srv/scenes/scene_001.jpg"}],
            }
        )

    monkeypatch.setattr(runner.requests, "post", fake_post)
    monkeypatch.setattr(runner.requests, "get", fake_get)

    source = tmp_path / "clip.mp4"
    args = runner.parse_args([str(source), "-n", "5"])
    assert runner.run_remote(args, "http://sieve.local") == 0

    assert posted["url"] == "http://sieve.local/sieve"
    assert posted["payload"]["input_path"] == str(source.resolve())
    assert posted["payload"]["output_dir"] is None
    assert posted["payload"]["config"] == {"count": 5, "threshold": 0.5}
    output = capsys.readouterr().out
    assert "Done! 30 frames -> 5 scenes (900 ms)" in output
    assert "/srv/scenes/scene_001.jpg" in output


def test_post_with_retry_surfaces_rejections(monkeypatch) -> None:
    monkeypatch.setattr(
        runner.requests,
        "post",
        lambda url, json=None, timeout=None: FakeResponse({"detail": "Input file does not exist: x"}, 422),
    )
    with pytest.raises(ValueError, match="does not exist"):
        runner.post_with_retry("http://sieve.local/sieve", {}, 5)


def test_post_with_retry_gives_up_after_connection_errors(monkeypatch) -> None:
    attempts = []

    def failing_post(url, json=None, timeout=None):
        attempts.append(url)
        raise runner.requests.ConnectionError("refused")

    monkeypatch.setattr(runner.requests, "post", failing_post)
    monkeypatch.setattr(runner.time, "sleep", lambda seconds: None)

    with pytest.raises(RuntimeError):
        runner.post_with_retry("http://sieve.local/sieve", {}, 5)
    assert len(attempts) == runner.RETRY_ATTEMPTS
