#!/usr/bin/env python3
"""
Mirrorcal CLI - mirror array calibration and alignment.

Usage:
    mirrorcal demo      - Calibrate and align a simulated mirror array
    mirrorcal init PATH - Write a default project config
    mirrorcal show PATH - Print a saved calibration run summary
    mirrorcal --help    - Show this help
"""

import asyncio
import logging
import sys
from pathlib import Path


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def print_summary(summary) -> None:
    """Human readable run summary."""
    blueprint = summary.blueprint
    print(f"Camera: {summary.camera.resolution.width}x{summary.camera.resolution.height}"
          f"{' (' + summary.camera.label + ')' if summary.camera.label else ''}")
    if blueprint is None:
        print("Blueprint: unavailable")
    else:
        print(f"Blueprint: {blueprint.grid_size.rows}x{blueprint.grid_size.cols} grid")
        print(f"  camera origin offset: ({blueprint.camera_origin_offset.x:+.4f}, "
              f"{blueprint.camera_origin_offset.y:+.4f})")
        print(f"  grid origin:          ({blueprint.grid_origin.x:+.4f}, {blueprint.grid_origin.y:+.4f})")
        print(f"  tile footprint:       {blueprint.adjusted_tile_footprint.width:.4f} x "
              f"{blueprint.adjusted_tile_footprint.height:.4f}")
    if summary.outliers is not None and summary.outliers.outlier_count:
        print(f"Outliers: {', '.join(summary.outliers.outlier_tile_keys)}")

    print("Tiles:")
    for key in sorted(summary.tiles):
        result = summary.tiles[key]
        line = f"  {key:>5}  {result.status:<9}"
        if result.home_offset is not None:
            line += f"  offset ({result.home_offset.x:+.4f}, {result.home_offset.y:+.4f})"
        if result.step_scale is not None:
            sx = f"{result.step_scale.x:+.6f}" if result.step_scale.x is not None else "-"
            sy = f"{result.step_scale.y:+.6f}" if result.step_scale.y is not None else "-"
            line += f"  scale ({sx}, {sy})"
        if result.error:
            line += f"  error: {result.error}"
        print(line)


def print_alignment(summary) -> None:
    print("Alignment:")
    for key in sorted(summary.tiles):
        state = summary.tiles[key]
        line = f"  {key:>5}  {state.status:<10}  x {state.x.status} ({state.x.correction_steps:+d})" \
               f"  y {state.y.status} ({state.y.correction_steps:+d})"
        if state.baseline is not None and state.final is not None:
            line += f"  ecc {state.baseline.eccentricity:.3f} -> {state.final.eccentricity:.3f}"
        print(line)
    print(f"  converged {summary.tiles_converged}, partial {summary.tiles_partial}, "
          f"skipped {summary.tiles_skipped}, errored {summary.tiles_errored}")
    if summary.average_area_reduction_percent is not None:
        print(f"  average area reduction: {summary.average_area_reduction_percent:.1f}%")


async def run_demo(rows: int = 3, cols: int = 3, seed: int | None = 0, align: bool = True):
    """
    Calibrate (and optionally align) a simulated rig.

    Returns:
        (calibration summary, alignment summary or None)
    """
    from .alignment import AlignmentController, targets_from_summary
    from .calibration.runner import CalibrationRunner
    from .collaborators import DetectionChannel, RetryPolicy
    from .simulation import build_demo_rig
    from .types import AlignmentSettings, CameraMetadata, RunnerSettings

    rig, grid = build_demo_rig(rows, cols, seed=seed)
    channel = DetectionChannel(rig)
    camera = CameraMetadata(resolution=rig.resolution, label="simulated")
    retry = RetryPolicy(backoff_s=0.0)

    runner = CalibrationRunner(
        grid,
        rig,
        channel,
        camera,
        settings=RunnerSettings(),
        retry_policy=retry,
    )
    summary = await runner.run()
    if summary is None or not align:
        return summary, None

    session = channel.session()
    try:
        controller = AlignmentController(
            targets_from_summary(summary, grid, region_scale=3.0),
            rig,
            session,
            grid.size,
            settings=AlignmentSettings(settling_delay_s=0.0, step_size=40, min_step_size=4),
            retry_policy=retry,
        )
        alignment = await controller.run()
    finally:
        session.close()
    return summary, alignment


def demo_main() -> int:
    import argparse

    from .config import save_run_summary

    parser = argparse.ArgumentParser(prog="mirrorcal demo", description="Simulated calibration run")
    parser.add_argument("--rows", type=int, default=3, help="Grid rows (default: 3)")
    parser.add_argument("--cols", type=int, default=3, help="Grid columns (default: 3)")
    parser.add_argument("--seed", type=int, default=0, help="Simulation seed (default: 0)")
    parser.add_argument("--no-align", action="store_true", help="Skip the alignment pass")
    parser.add_argument("-o", "--output", type=str, default=None, help="Save the run summary (TOML)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    _setup_logging(args.verbose)

    summary, alignment = asyncio.run(run_demo(args.rows, args.cols, args.seed, not args.no_align))
    if summary is None:
        print("ERROR: calibration run did not produce a summary")
        return 1
    print_summary(summary)
    if alignment is not None:
        print_alignment(alignment)
    if args.output:
        save_run_summary(summary, Path(args.output))
        print(f"Saved summary to {args.output}")
    return 0


def init_main() -> int:
    import argparse

    from .config import create_default_project_config, save_project_config

    parser = argparse.ArgumentParser(prog="mirrorcal init", description="Write a default project config")
    parser.add_argument("path", type=str)
    parser.add_argument("--rows", type=int, default=3)
    parser.add_argument("--cols", type=int, default=3)
    args = parser.parse_args()

    path = Path(args.path)
    if path.exists():
        print(f"ERROR: {path} already exists")
        return 1
    save_project_config(create_default_project_config(args.rows, args.cols), path)
    print(f"Wrote {path}")
    return 0


def show_main() -> int:
    import argparse

    from .config import load_run_summary
    from .errors import ConfigError

    parser = argparse.ArgumentParser(prog="mirrorcal show", description="Print a run summary")
    parser.add_argument("path", type=str)
    args = parser.parse_args()

    try:
        summary = load_run_summary(Path(args.path))
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 1
    if summary is None:
        print(f"ERROR: {args.path} not found")
        return 1
    print_summary(summary)
    return 0


def main():
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(__doc__)
        return 0

    command = sys.argv[1]
    sys.argv = [sys.argv[0]] + sys.argv[2:]  # Remove subcommand from argv

    if command == "demo":
        return demo_main()

    elif command == "init":
        return init_main()

    elif command == "show":
        return show_main()

    else:
        print(f"Unknown command: {command}")
        print("Run 'mirrorcal --help' for usage")
        return 1


if __name__ == "__main__":
    sys.exit(main())
