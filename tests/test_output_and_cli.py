from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from grating_app.__main__ import main
from grating_app.domain.models import SUCCESS, EvaluationResult, MathOptions
from grating_app.domain.profiles import BlazedProfile
from grating_app.exporting.io import (
    SweepOutputWriter,
    dataset_long_table,
    format_header,
    format_output,
    format_result_line,
    sweep_dataset,
)
from grating_app.orchestration.sweep import StepRecord, SweepPlan, SweepState, SweepStep

HEADER = """\
# Input
mode=constantIncidence
incidenceAngle=88
units=eV
min=100
max=300
increment=5
gratingType=blazed
gratingPeriod=1.6
gratingGeometry=3.2,30
gratingMaterial=Au
N=5
"""


def _state() -> SweepState:
    orders = np.arange(-1, 2)
    ok = EvaluationResult(SUCCESS, orders, np.array([0.1, 0.25, 0.0]), np.zeros(3))
    bad = EvaluationResult.failure(orders, "x")
    s = SweepState(total_steps=3)
    s = s.with_record(StepRecord(SweepStep(1, 105.0, 88.0, 0.0118), bad))
    return s.with_record(StepRecord(SweepStep(0, 100.0, 88.0, 0.0124), ok))


def test_header_echoes_the_run(au_blazed: BlazedProfile) -> None:
    plan = SweepPlan(
        mode="constantIncidence", min=100, max=300, increment=5, eV=True, incidence_angle_deg=88
    )
    assert format_header(au_blazed, plan, MathOptions(N=5)) == HEADER


def test_result_lines_and_failed_steps() -> None:
    recs = _state().ordered()
    assert format_result_line(recs[0]) == "100\t0.1,0.25,0"
    assert format_result_line(recs[1]) == "105\tnan,nan,nan"


def test_output_document_layout() -> None:
    text = format_output(HEADER, _state())
    lines = text.splitlines()
    i = lines.index("# Progress")
    assert lines[i + 1 : i + 4] == ["status=inProgress", "completedSteps=2", "totalSteps=3"]
    assert lines[i + 4] == "# Output"
    assert lines[i + 5].startswith("100\t") and lines[i + 6].startswith("105\t")


def test_writer_rewrites_both_files(tmp_path: Path) -> None:
    out, prog = tmp_path / "out.txt", tmp_path / "progress.txt"
    w = SweepOutputWriter(out, HEADER, prog)
    w.write(SweepState(total_steps=3))
    assert prog.read_text() == "# Progress\nstatus=inProgress\ncompletedSteps=0\ntotalSteps=3\n"
    w.write(_state())
    assert "completedSteps=2" in prog.read_text()
    assert out.read_text().count("# Input") == 1
    assert out.read_text().endswith("105\tnan,nan,nan\n")
    # each checkpoint is swapped in whole; no staging file stays behind
    assert sorted(p.name for p in tmp_path.iterdir()) == ["out.txt", "progress.txt"]


def test_writer_fails_early_on_unwritable_sink(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        SweepOutputWriter(tmp_path / "missing" / "out.txt", HEADER)


def test_sweep_dataset_and_long_table() -> None:
    ds = sweep_dataset(_state())
    assert ds["R"].dims == ("step", "order")
    assert list(ds["order"].values) == [-1, 0, 1]
    assert ds["R"].sel(step=0, order=0).item() == pytest.approx(0.25)
    assert np.isnan(ds["R"].sel(step=1)).all()
    df = dataset_long_table(ds)
    assert len(df) == 2 * 2 * 3
    assert {"var", "step", "order", "efficiency"} <= set(df.columns)


def _cli_args(tmp_path: Path, **over: str) -> list[str]:
    args = {
        "--gratingType": "blazed",
        "--gratingPeriod": "1.6",
        "--gratingGeometry": "3.2,30",
        "--gratingMaterial": "Au",
        "--N": "3",
        "--mode": "constantIncidence",
        "--incidenceAngle": "88",
        "--min": "100",
        "--max": "110",
        "--increment": "5",
        "--outputFile": str(tmp_path / "out.txt"),
        "--progressFile": str(tmp_path / "progress.txt"),
        "--workers": "1",
    }
    args.update(over)
    argv: list[str] = []
    for k, v in args.items():
        argv += [k, v]
    return argv + ["--eV"]


def test_cli_runs_a_sweep(tmp_path: Path) -> None:
    assert main(_cli_args(tmp_path)) == 0
    text = (tmp_path / "out.txt").read_text()
    assert "gratingGeometry=3.2,30\n" in text
    assert "completedSteps=3\ntotalSteps=3\n" in text
    rows = text.split("# Output\n")[1].splitlines()
    assert [r.split("\t")[0] for r in rows] == ["100", "105", "110"]
    assert all(len(r.split("\t")[1].split(",")) == 7 for r in rows)
    assert (tmp_path / "progress.txt").read_text().startswith("# Progress\nstatus=")


def test_cli_rejects_invalid_geometry(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_cli_args(tmp_path, **{"--gratingGeometry": "95,30"})) == 1
    assert "Invalid command-line options" in capsys.readouterr().err


def test_cli_missing_mode_parameter_is_fatal(tmp_path: Path) -> None:
    argv = _cli_args(tmp_path, **{"--mode": "constantWavelength"})
    assert main(argv) == 1


def test_cli_argument_errors_exit_with_status_one(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as info:
        main(["--gratingType", "blazed"])
    assert info.value.code == 1


def test_cli_unwritable_output_is_fatal(tmp_path: Path) -> None:
    argv = _cli_args(tmp_path, **{"--outputFile": str(tmp_path / "nope" / "out.txt")})
    assert main(argv) == 1
