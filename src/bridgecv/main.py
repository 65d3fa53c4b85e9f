from pathlib import Path
from typing import Optional, Tuple

import click
from tqdm import tqdm

from bridgecv.data.parse.config import RunConfig, parse_config
from bridgecv.data.parse.trajectory import Trajectory, load_trajectory
from bridgecv.data.write.writer import ColvarWriter, DerivativeWriter
from bridgecv.model.colvar.factory import create_cv_from_config
from bridgecv.model.colvar.pbc import PeriodicBox


def load_inputs(config: str, trajectory: Optional[str]) -> Tuple[RunConfig, Optional[Trajectory]]:
    """Parse the configuration and the trajectory, turning errors into CLI errors."""
    try:
        run_config = parse_config(Path(config))
        traj = load_trajectory(trajectory) if trajectory is not None else None
    except (ValueError, FileNotFoundError) as e:
        raise click.ClickException(str(e)) from e
    return run_config, traj


def resolve_box(
    cli_box: Optional[Tuple[float, float, float]],
    run_config: RunConfig,
    traj: Trajectory,
    frame: int,
) -> PeriodicBox:
    """Command line box, then configuration box, then the box stored in the frame."""
    if cli_box:
        return PeriodicBox.from_spec(list(cli_box))
    if run_config.system.box is not None:
        return PeriodicBox.from_spec(run_config.system.box)
    return PeriodicBox.from_spec(traj.boxes[frame])


@click.group()
def cli() -> None:
    """Bridge collective variable."""
    return


@cli.command()
@click.argument("config", type=click.Path(exists=True))
def check(config: str) -> None:
    """Validate a configuration and describe the CV."""
    run_config, _ = load_inputs(config, None)
    try:
        cv = create_cv_from_config(run_config.cv, debug=run_config.debug)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"CV '{run_config.cv.name}' ({run_config.cv.cv_type}): {cv.n_atoms} atoms requested")
    for line in cv.description():
        click.echo(f"  {line}")


@cli.command()
@click.argument("config", type=click.Path(exists=True))
@click.argument("trajectory", type=click.Path(exists=True))
@click.option(
    "--out_dir",
    type=click.Path(exists=False),
    help="The path where to save the outputs.",
    default="./",
)
@click.option(
    "--box",
    type=float,
    nargs=3,
    help="Orthorhombic box lengths. Overrides the configuration and the trajectory.",
    default=None,
)
@click.option(
    "--exchange_stride",
    type=int,
    help="Replica exchange stride in steps. Overrides the configuration. 0 disables exchanges.",
    default=None,
)
@click.option(
    "--progress/--no_progress",
    help="Show a progress bar. Default is on.",
    default=True,
)
@click.option(
    "--debug",
    is_flag=True,
    help="Print debug information.",
)
def evaluate(
    config: str,
    trajectory: str,
    out_dir: str = "./",
    box: Optional[Tuple[float, float, float]] = None,
    exchange_stride: Optional[int] = None,
    progress: bool = True,
    debug: bool = False,
) -> None:
    """Evaluate the CV on every frame of a trajectory."""
    run_config, traj = load_inputs(config, trajectory)
    debug = debug or run_config.debug

    if exchange_stride is None:
        exchange_stride = run_config.system.exchange_stride
    if exchange_stride < 0:
        raise click.BadParameter("must be >= 0", param_hint="--exchange_stride")

    try:
        cv = create_cv_from_config(
            run_config.cv, topology=traj.topology, n_atoms=traj.n_atoms, debug=debug
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Evaluating '{run_config.cv.name}' on {traj.n_frames} frames of {traj.n_atoms} atoms.")
    for line in cv.description():
        click.echo(f"  {line}")

    out_dir = Path(out_dir).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)
    derivative_writer = None
    if run_config.output.derivatives:
        derivative_writer = DerivativeWriter(out_dir / run_config.output.derivatives)

    with ColvarWriter(out_dir / run_config.output.colvar, [run_config.cv.name]) as colvar:
        for step in tqdm(range(traj.n_frames), disable=not progress):
            exchange_step = exchange_stride > 0 and step > 0 and step % exchange_stride == 0
            try:
                cell = resolve_box(box, run_config, traj, step)
                result = cv.evaluate(traj.frames[step], step=step, box=cell, exchange_step=exchange_step)
            except (ValueError, RuntimeError) as e:
                raise click.ClickException(f"step {step}: {e}") from e

            if step % run_config.output.stride == 0:
                colvar.write(step, [result.value.item()])
                if derivative_writer is not None:
                    derivative_writer.add(step, result)

    click.echo(f"Wrote {colvar.rows} rows to {colvar.path}")
    if derivative_writer is not None:
        saved = derivative_writer.save()
        if saved is not None:
            click.echo(f"Wrote derivatives to {saved}")
    if cv.neighbor_list is not None:
        click.echo(
            f"Neighbor list: {cv.neighbor_list.n_rebuilds} rebuilds, "
            f"{cv.neighbor_list.n_reused} reused steps"
        )


if __name__ == "__main__":
    cli()
