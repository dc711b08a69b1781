"""
PALM Prep — CLI Entry Point
============================
Installed as the ``palm-prep`` command via ``pyproject.toml``.

Usage:
    palm-prep run --config config.json
    palm-prep run --config config.json --output output/ --verbose
    palm-prep csd-config --input-dir output/ --output-dir output/ --prefix munich --epsg 25832
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from palm_prep.csd import CsdAttributes, CsdDomain, CsdOutput, CsdSettings, write_csd_configuration
from palm_prep.pipeline import StaticDriverPipeline
from shared.python.exceptions import PalmPrepError


@click.group(name="palm-prep", help="Prepare PALM-4U static driver inputs for an AOI.")
def main() -> None:
    """Command group."""


@main.command(
    name="run",
    help="Download, repair, classify, align and export all inputs described by a JSON config.",
)
@click.option(
    "--config", "-c", "config_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Path to the JSON pipeline configuration.",
)
@click.option(
    "--output", "-o", "output_path",
    default=None,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Output directory.  Overrides 'output_dir' from the config.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def run(config_path: Path, output_path: Path | None, verbose: bool) -> None:
    """Wire Click options into StaticDriverPipeline."""
    pipeline = StaticDriverPipeline(config_path, output_path, verbose=verbose)

    try:
        pipeline.run()
    except PalmPrepError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo(f"\nOutputs written to: {pipeline.output_path}")
    if pipeline.exports is not None:
        for filename in pipeline.exports["filename"]:
            click.echo(f"  {filename}")
    if pipeline.csd_path is not None:
        click.echo(f"  {pipeline.csd_path.name}")


@main.command(
    name="csd-config",
    help="Write a palm_csd YAML configuration, discovering input rasters by name.",
)
@click.option(
    "--input-dir", "input_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    help="Directory searched for input rasters.",
)
@click.option(
    "--output-dir", "output_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    help="Directory receiving the YAML file.",
)
@click.option("--prefix", default="static_driver", show_default=True, help="Filename prefix.")
@click.option("--epsg", default=25832, show_default=True, type=int, help="EPSG code of the domain.")
@click.option("--season", default="summer", show_default=True, help="Season setting.")
@click.option("--author", default=None, help="Author name and email.")
@click.option("--acronym", default=None, help="Site acronym.")
@click.option("--pixel-size", default=1.0, show_default=True, type=float, help="Grid spacing in metres.")
@click.option("--origin-x", default=None, type=float, help="Domain origin x (lower left).")
@click.option("--origin-y", default=None, type=float, help="Domain origin y (lower left).")
@click.option("--nx", default=None, type=int, help="Grid points in x.")
@click.option("--ny", default=None, type=int, help="Grid points in y.")
@click.option("--file-out", default=None, help="Name of the static driver produced by palm_csd.")
def csd_config(
    input_dir: Path,
    output_dir: Path,
    prefix: str,
    epsg: int,
    season: str,
    author: str | None,
    acronym: str | None,
    pixel_size: float,
    origin_x: float | None,
    origin_y: float | None,
    nx: int | None,
    ny: int | None,
    file_out: str | None,
) -> None:
    """Wire Click options into write_csd_configuration."""
    try:
        path = write_csd_configuration(
            prefix=prefix,
            output_dir=output_dir,
            input_root=input_dir,
            attributes=CsdAttributes(author=author, acronym=acronym),
            settings=CsdSettings(epsg=epsg, season=season),
            output=CsdOutput(path=str(output_dir), file_out=file_out),
            domain=CsdDomain(pixel_size=pixel_size, origin_x=origin_x, origin_y=origin_y, nx=nx, ny=ny),
        )
    except PalmPrepError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo(f"Configuration written to: {path}")


if __name__ == "__main__":
    main()
