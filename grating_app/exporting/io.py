from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np
import pandas as pd
import xarray as xr

from grating_app.domain.models import MathOptions
from grating_app.domain.profiles import GratingProfile
from grating_app.orchestration.sweep import StepRecord, SweepPlan, SweepState


def format_number(x: float) -> str:
    """Shortest general form, six significant digits ("100", "3.2", "0.0123457", "nan")."""
    return f"{float(x):g}"


def format_header(profile: GratingProfile, plan: SweepPlan, options: MathOptions) -> str:
    """The `# Input` section echoing the run configuration."""
    lines = ["# Input", f"mode={plan.mode}"]
    if plan.mode == "constantIncidence":
        lines.append(f"incidenceAngle={format_number(plan.incidence_angle_deg or 0.0)}")
    elif plan.mode == "constantIncludedAngle":
        lines.append(f"includedAngle={format_number(plan.included_angle_deg or 0.0)}")
        lines.append(f"toOrder={plan.to_order}")
    else:
        lines.append(f"wavelength={format_number(plan.wavelength or 0.0)}")
    lines += [
        f"units={'eV' if plan.eV else 'um'}",
        f"min={format_number(plan.min)}",
        f"max={format_number(plan.max)}",
        f"increment={format_number(plan.increment)}",
        f"gratingType={profile.kind}",
        f"gratingPeriod={format_number(profile.period_um)}",
        f"gratingGeometry={','.join(format_number(g) for g in profile.geometry())}",
        f"gratingMaterial={profile.material}",
        f"N={options.N}",
    ]
    return "\n".join(lines) + "\n"


def format_progress(state: SweepState) -> str:
    return (
        "# Progress\n"
        f"status={state.status}\n"
        f"completedSteps={state.completed_steps}\n"
        f"totalSteps={state.total_steps}\n"
    )


def format_result_line(record: StepRecord) -> str:
    """`<value>\\t<eta_-N>,...,<eta_N>`; a failed step carries nan in every column."""
    effs = ",".join(format_number(e) for e in record.result.efficiency)
    return f"{format_number(record.step.value)}\t{effs}"


def format_output(header: str, state: SweepState) -> str:
    body = "".join(format_result_line(r) + "\n" for r in state.ordered())
    return header + format_progress(state) + "# Output\n" + body


def replace_text(path: Path, text: str) -> None:
    """Swap `text` in as the content of `path` via a sibling temp file and os.replace."""
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


class SweepOutputWriter:
    """
    Writes the main output file (input echo, progress, results) and the
    optional progress file. Both are rewritten in full at each checkpoint and
    swapped in with an atomic rename, so a reader polling either file sees
    either the previous or the new document, never a partial one.

    Construction creates both files, so an unwritable sink fails before any
    computation starts.
    """

    def __init__(self, output_path: str | Path, header: str, progress_path: str | Path | None = None):
        self.output_path = Path(output_path)
        self.progress_path = Path(progress_path) if progress_path else None
        self.header = header
        replace_text(self.output_path, header)
        if self.progress_path is not None:
            replace_text(self.progress_path, "")

    def write(self, state: SweepState) -> None:
        replace_text(self.output_path, format_output(self.header, state))
        if self.progress_path is not None:
            replace_text(self.progress_path, format_progress(state))

    __call__ = write


# ---------------- In-memory export ----------------


def sweep_dataset(state: SweepState, orders: Sequence[int] | None = None) -> xr.Dataset:
    """Completed steps as an xarray Dataset on (step, order)."""
    records = state.ordered()
    if orders is None:
        orders = records[0].result.orders if records else np.zeros(0, dtype=int)
    orders = np.asarray(orders, dtype=int)
    n_steps = len(records)

    R = np.full((n_steps, orders.size), np.nan)
    T = np.full((n_steps, orders.size), np.nan)
    total = np.full(n_steps, np.nan)
    for i, rec in enumerate(records):
        R[i] = rec.result.efficiency
        T[i] = rec.result.transmitted
        if rec.result.diagnostics is not None:
            total[i] = rec.result.diagnostics.conservation_sum

    coords = {
        "step": np.array([r.step.index for r in records], dtype=int),
        "order": orders,
        "value": ("step", np.array([r.step.value for r in records], dtype=float)),
        "angle_deg": ("step", np.array([r.step.angle_deg for r in records], dtype=float)),
        "wavelength_um": ("step", np.array([r.step.wavelength_um for r in records], dtype=float)),
    }
    ds = xr.Dataset(
        data_vars={
            "R": (("step", "order"), R),
            "T": (("step", "order"), T),
            "conservation_sum": ("step", total),
            "status": ("step", np.array([r.result.status for r in records], dtype=object)),
        },
        coords=coords,
        attrs={"sweep_status": state.status, "total_steps": state.total_steps},
    )
    return ds


def dataset_long_table(ds: xr.Dataset, vars: Iterable[str] = ("R", "T")) -> pd.DataFrame:
    """Tidy long-form table: one row per (step, order, var)."""
    df = ds[list(vars)].to_array("var").to_dataframe(name="efficiency").reset_index()
    return df
