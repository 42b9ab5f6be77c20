from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Sequence

from pydantic import ValidationError

from grating_app.adapters.materials.builtin import default_table
from grating_app.domain.errors import GratingError
from grating_app.domain.models import MathOptions
from grating_app.domain.profiles import make_profile
from grating_app.exporting.io import SweepOutputWriter, format_header
from grating_app.orchestration.sweep import SweepPlan, SweepState, run_sweep

logger = logging.getLogger("grating_app")


class _ArgumentParser(argparse.ArgumentParser):
    # configuration errors are fatal with exit status 1
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _float_list(text: str) -> list[float]:
    try:
        return [float(v) for v in text.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a comma-delimited list of numbers, got {text!r}")


def _index_entry(text: str) -> tuple[str, complex]:
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=n+kj, got {text!r}")
    try:
        return name, complex(value.replace(" ", ""))
    except ValueError:
        raise argparse.ArgumentTypeError(f"bad refractive index {value!r} for {name}")


def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(
        prog="grating_app",
        description="Diffraction efficiency of surface-relief gratings (Fourier-modal method)",
    )
    g = p.add_argument_group("grating")
    g.add_argument("--gratingType", required=True,
                   choices=["rectangular", "blazed", "sinusoidal", "trapezoidal"])
    g.add_argument("--gratingPeriod", required=True, type=float, help="period in um")
    g.add_argument("--gratingGeometry", required=True, type=_float_list,
                   help="comma-delimited geometry parameters (um and/or degrees)")
    g.add_argument("--gratingMaterial", required=True)
    g.add_argument("--N", required=True, type=int, help="truncation index (orders -N..N)")

    m = p.add_argument_group("operating mode")
    m.add_argument("--mode", required=True,
                   choices=["constantIncidence", "constantIncludedAngle", "constantWavelength"])
    m.add_argument("--min", required=True, type=float)
    m.add_argument("--max", required=True, type=float)
    m.add_argument("--increment", required=True, type=float)
    m.add_argument("--incidenceAngle", type=float, help="degrees (constantIncidence)")
    m.add_argument("--includedAngle", type=float, help="degrees (constantIncludedAngle)")
    m.add_argument("--toOrder", type=int, help="order for the included angle (inside < 0)")
    m.add_argument("--wavelength", type=float, help="um, or eV with --eV (constantWavelength)")
    m.add_argument("--eV", action="store_true", help="wavelength inputs are photon energies in eV")

    o = p.add_argument_group("output")
    o.add_argument("--outputFile", required=True)
    o.add_argument("--progressFile")
    o.add_argument("--printDebugOutput", action="store_true")

    x = p.add_argument_group("numerics and execution")
    x.add_argument("--polarization", choices=["TE", "TM"], default="TE")
    x.add_argument("--slices", type=int, default=20, help="staircase lamellae for sloped grooves")
    x.add_argument("--workers", type=int, default=None, help="worker processes (default: all CPUs)")
    x.add_argument("--refractiveIndex", type=_index_entry, action="append", default=[],
                   metavar="NAME=n+kj", help="add or override a material index (repeatable)")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.printDebugOutput else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    optics = default_table()
    for name, n in args.refractiveIndex:
        optics = optics.with_entry(name, n)

    try:
        profile = make_profile(
            args.gratingType, args.gratingPeriod, args.gratingGeometry, args.gratingMaterial
        )
        plan = SweepPlan(
            mode=args.mode,
            min=args.min,
            max=args.max,
            increment=args.increment,
            eV=args.eV,
            incidence_angle_deg=args.incidenceAngle,
            included_angle_deg=args.includedAngle,
            to_order=args.toOrder,
            wavelength=args.wavelength,
        )
        options = MathOptions(N=args.N, polarization=args.polarization, n_slices=args.slices)
    except (GratingError, ValidationError) as e:
        sys.stderr.write(f"Invalid command-line options: {e}\n")
        return 1

    try:
        writer = SweepOutputWriter(
            args.outputFile, format_header(profile, plan, options), args.progressFile
        )
        writer.write(SweepState(total_steps=plan.total_steps))
    except OSError as e:
        sys.stderr.write(f"Could not open output file: {e}\n")
        return 1

    state = run_sweep(
        profile,
        plan,
        options,
        optics,
        workers=args.workers,
        on_progress=writer.write,
        debug=args.printDebugOutput,
    )
    logger.info("sweep finished: %s %s", state.status, state.counts())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
