"""
Land-Cover Classifier — CLI Entry Point
=======================================
Installed as the ``geo-landcover`` command via ``pyproject.toml``.

Usage::

    geo-landcover --preset cairo \\
        --scenes landsat8=data/cairo/landsat8 \\
        --training data/cairo/training.geojson \\
        --output-dir output/cairo

    geo-landcover --preset guyana \\
        --scenes landsat8=data/guyana/landsat8 \\
        --scenes sentinel1=data/guyana/sentinel1 \\
        --dem data/guyana/dem.tif --region data/guyana/aoi.geojson \\
        --training data/guyana/training.geojson --output-dir output/guyana

Run ``geo-landcover --help`` for the full option list.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from shared.python.exceptions import GeoClassifyError

from landcover_classifier.pipeline import ClassificationConfig, LandCoverClassifier
from landcover_classifier.presets import PRESETS, get_preset


def _parse_scene_dirs(values: tuple[str, ...]) -> dict[str, Path]:
    """Parse repeated ``NAME=DIR`` options into a dict."""
    scene_dirs: dict[str, Path] = {}
    for raw in values:
        name, sep, directory = raw.partition("=")
        if not sep or not name.strip() or not directory.strip():
            raise click.BadParameter(f"expected NAME=DIR, got '{raw}'", param_hint="--scenes")
        scene_dirs[name.strip()] = Path(directory.strip())
    return scene_dirs


@click.command(
    name="geo-landcover",
    help="Composite cloud-free imagery, train a random forest on labelled "
         "polygons and map land cover with accuracy and area statistics.",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS), case_sensitive=False),
    default=None,
    help="Start from a study preset.",
)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON classification config (used instead of --preset).",
)
@click.option(
    "--scenes", "scenes",
    multiple=True,
    required=True,
    metavar="NAME=DIR",
    help="Scene directory for a configured collection; repeat per collection.",
)
@click.option(
    "--training", "training_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Labelled training geometries (GeoJSON, GPKG or SHP).",
)
@click.option(
    "--output-dir", "output_dir",
    default="output",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for the classified raster, vectors, CSV and report.",
)
@click.option("--dem", "dem_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Elevation raster on the composite grid.")
@click.option("--region", "region_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Study-area polygon(s) for scene filtering and area sums.")
@click.option("--reference", "reference_path",
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Reference class map to compare against.")
@click.option("--start", "start_date", default=None, help="First acquisition date (YYYY-MM-DD).")
@click.option("--end", "end_date", default=None, help="End date, exclusive (YYYY-MM-DD).")
@click.option("--trees", "number_of_trees", type=int, default=None, help="Number of trees.")
@click.option("--split", "split_fraction", type=float, default=None,
              help="Training fraction in (0, 1).")
@click.option("--seed", type=int, default=None, help="Random seed for sampling and training.")
@click.option("--jobs", "n_jobs", type=int, default=None, help="Parallel tree fits.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(
    preset: str | None,
    config_path: Path | None,
    scenes: tuple[str, ...],
    training_path: Path,
    output_dir: Path,
    dem_path: Path | None,
    region_path: Path | None,
    reference_path: Path | None,
    start_date: str | None,
    end_date: str | None,
    number_of_trees: int | None,
    split_fraction: float | None,
    seed: int | None,
    n_jobs: int | None,
    verbose: bool,
) -> None:
    """CLI entry point — wires Click options into LandCoverClassifier."""
    if (preset is None) == (config_path is None):
        click.echo("Error: give exactly one of --preset or --config.", err=True)
        sys.exit(1)

    scene_dirs = _parse_scene_dirs(scenes)

    try:
        config = get_preset(preset) if preset else ClassificationConfig.from_json(config_path)  # type: ignore[arg-type]
        config = config.with_overrides(
            start_date=start_date,
            end_date=end_date,
            number_of_trees=number_of_trees,
            split_fraction=split_fraction,
            seed=seed,
            n_jobs=n_jobs,
        )
        tool = LandCoverClassifier(
            scene_dirs,
            training_path,
            output_dir,
            config,
            dem_path=dem_path,
            region_path=region_path,
            reference_path=reference_path,
            verbose=verbose,
        )
        tool.run()
    except GeoClassifyError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    result = tool.result
    click.echo(f"\n{result.summary()}")
    for kind, path in tool.outputs.items():
        click.echo(f"  {kind:<10} {path}")


if __name__ == "__main__":
    cli()
