import logging
import sys
from pathlib import Path

import click
import yaml

from . import compressor, palette, raster, segmenter
from .character import SAMPLES, load_character, load_sample, load_yaml
from .model import CharacterModel
from .segmenter import PartId, SegmentationBands


def _bands_from_config(config):
    if not config:
        return SegmentationBands(), None
    data = load_yaml(config) or {}
    if not isinstance(data, dict):
        raise click.BadParameter("config must be a YAML mapping", param_hint="--config")
    return SegmentationBands.from_dict(data.get("segmentation")), data.get("background")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log pipeline details to stderr")
def main(verbose):
    """Sprite segmentation, compression and puppet-animation atlas toolkit."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command()
@click.option("--image", type=click.Path(exists=True, dir_okay=False), required=True, help="Source character image")
@click.option("--background", type=str, default=None, help="RGB hex color treated as transparent (e.g. ffffff)")
def inspect(image, background):
    """Print image size, identity, bounding box and palette."""
    try:
        info = raster.inspect_image(image, background=background)
        src = raster.load_image(image, background=background)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Size: {info['width']}x{info['height']}")
    click.echo(f"Identity: {info['identity']}")
    click.echo(f"Opaque pixels: {info['opaque']}")
    if info.get("warning"):
        click.echo(f"Warning: {info['warning']}")
    else:
        x, y, w, h = info["bbox"]
        click.echo(f"Bounding box: x={x} y={y} w={w} h={h}")
    counts = palette.count_colors(src)
    pal, _ = palette.extract_palette(src)
    click.echo(f"Palette ({len(pal)} colors):")
    for i, rgb in enumerate(pal):
        click.echo(f"  c{i}: {raster.format_hex_rgb(rgb)}  {counts[rgb]}px")


@main.command()
@click.option("--image", type=click.Path(exists=True, dir_okay=False), required=True, help="Source character image")
@click.option("--config", type=click.Path(exists=True, dir_okay=False), default=None, help="Character YAML with segmentation bands")
@click.option("--background", type=str, default=None, help="RGB hex color treated as transparent (overrides config)")
@click.option("--out", type=click.Path(dir_okay=False), default=None, help="Write the hand-authorable parts table (YAML)")
@click.option("--check", is_flag=True, help="Verify lossless round-trip and command disjointness")
def segment(image, config, background, out, check):
    """Segment an image into body parts and compress each part to rectangles."""
    try:
        bands, cfg_background = _bands_from_config(config)
        src = raster.load_image(image, background=background or cfg_background)
        pal, color_index = palette.extract_palette(src)
        grid = segmenter.segment(src, bands)
        parts = compressor.compress_parts(grid, src, color_index)
    except ValueError as e:
        raise click.ClickException(str(e))

    total = sum(len(c) for c in parts.values())
    click.echo(f"{len(pal)} colors, {total} draw commands")
    for part in PartId:
        pixels = int((grid == part).sum())
        click.echo(f"  {part.key:12s} {len(parts[part]):4d} commands  {pixels:5d}px")

    if out:
        model = CharacterModel(
            name=Path(image).stem,
            width=src.width,
            height=src.height,
            palette=tuple(pal),
            parts=parts,
            pivots=segmenter.pivots_for(src, bands),
        )
        with open(out, "w", encoding="utf-8") as f:
            yaml.safe_dump(model.to_table(), f, sort_keys=False, default_flow_style=None)
        click.echo(f"Wrote parts table → {out}")

    if check:
        problems = compressor.check_round_trip(grid, src, pal, parts)
        if problems:
            for p in problems:
                click.echo(f"  FAIL {p}", err=True)
            raise click.ClickException("Compression round-trip check failed")
        click.echo("Round-trip check: OK")


@main.command()
@click.option("--config", type=click.Path(exists=True, dir_okay=False), default=None, help="Character YAML")
@click.option("--sample", type=click.Choice(SAMPLES), default=None, help="Bundled hand-authored character instead of --config")
@click.option("--out-png", type=click.Path(dir_okay=False), required=True, help="Output atlas image")
@click.option("--out-json", type=click.Path(dir_okay=False), required=True, help="Output frame/clip metadata")
@click.option("--workers", type=int, default=1, show_default=True, help="Frames rendered in parallel")
def build(config, sample, out_png, out_json, workers):
    """Render every clip pose and pack the frames into one sprite atlas."""
    if (config is None) == (sample is None):
        raise click.UsageError("Give exactly one of --config or --sample")
    if workers < 1:
        raise click.BadParameter("workers must be at least 1", param_hint="--workers")
    try:
        character = load_sample(sample) if sample else load_character(config)
        atlas = character.builder(workers=workers).build(character.key, character.model, character.clips, character.layout)
    except (ValueError, RuntimeError) as e:
        raise click.ClickException(str(e))
    if atlas.width == 0 or atlas.height == 0:
        raise click.ClickException("Atlas is empty; define at least one clip pose")
    atlas.save(out_png, out_json)
    click.echo(f"Wrote atlas → {out_png} ({atlas.width}x{atlas.height}, {len(atlas.frames)} frames)")
    click.echo(f"Wrote metadata → {out_json}")
    for name, clip in atlas.clips.items():
        idx = clip["frameIndices"]
        click.echo(f"  {name}: frames {idx[0]}-{idx[-1]} @ {clip['rate']} fps{' (loop)' if clip['loop'] else ''}")


if __name__ == "__main__":
    main()
