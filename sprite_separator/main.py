#!/usr/bin/env python3
"""
Sprite Separator - Command Line Interface

Splits a generated composite image (a main icon plus letters and small
decorations) into individual sprites. Each sprite is written as a tight RGBA
cutout with a softened alpha edge, and a JSON file records every sprite's
bounds and outline for downstream tools.
"""

import logging
from pathlib import Path

import click
import cv2

from sprite_separator.api import separate_sprites
from sprite_separator.config import SeparatorConfig, load_config
from sprite_separator.errors import DeadlineExceeded, ImageDecodeError, SpriteSeparationError
from sprite_separator.image_io import load_image
from sprite_separator.sprite_save import save_layer_metadata, save_sprites


@click.command(context_settings=dict(show_default=True))
@click.argument('input_path', type=click.Path(exists=True))
@click.argument('output_path', type=click.Path())
@click.option('--expected-count', '-e', type=click.IntRange(min=1), default=None,
              help='Number of sprites the image should contain  [default: from config, 5]')
@click.option('--precision', '-p', type=click.Choice(['surgical', 'standard']), default=None,
              help='Extraction precision  [default: from config, surgical]')
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='JSON configuration file')
@click.option('--time-budget', '-t', type=float, help='Processing budget in seconds')
@click.option('--spritesheet', '-s', is_flag=True,
              help='Create a single spritesheet instead of individual files')
@click.option('--debug', '-d', is_flag=True, help='Save intermediate images for debugging')
@click.option('--verbose', '-v', is_flag=True, help='Log progress of every stage')
def main(input_path: str, output_path: str, expected_count: int | None, precision: str | None,
         config_path: str | None, time_budget: float | None, spritesheet: bool, debug: bool,
         verbose: bool) -> None:
    """Separate a composite image into individual sprite cutouts.

    INPUT_PATH is the path to the input image file.

    OUTPUT_PATH is the base path for output files; sprites are written next to it
    as <stem>_sprite_<n>.png together with <stem>_layers.json.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(config_path) if config_path else SeparatorConfig()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    try:
        image = load_image(input_path)
    except ImageDecodeError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"Loaded {image.width}x{image.height} image")

    debug_dir = None
    if debug:
        debug_dir = Path("debug")
        debug_dir.mkdir(exist_ok=True)
        click.echo("Debug mode enabled, saving intermediate images to 'debug' directory")

    sprites = []
    names = []
    layers = []
    num_debug_images = 0
    try:
        for result in separate_sprites(
            image,
            expected_count=expected_count,
            precision=precision,
            config=config,
            time_budget=time_budget,
            debug=debug
        ):
            if result.is_debug:
                if debug_dir:
                    cv2.imwrite(str(debug_dir / f"{result.name}.png"), result.image)
                    num_debug_images += 1
            else:
                sprites.append(result.image)
                names.append(result.name)
                layers.append(result.layer)
    except DeadlineExceeded as e:
        click.echo(f"Warning: {e}; keeping {len(sprites)} sprite(s) extracted so far", err=True)
    except (ValueError, SpriteSeparationError) as e:
        click.echo(f"Error processing image: {e}", err=True)
        raise SystemExit(1)

    if debug:
        click.echo(f"Saved {num_debug_images} debug image(s) to {debug_dir}")

    if not sprites:
        click.echo("No sprites detected")
        return
    click.echo(f"Separated {len(sprites)} sprite(s)")

    save_sprites(sprites, output_path, create_sheet=spritesheet, names=names)
    metadata_path = save_layer_metadata(layers, output_path)

    if spritesheet:
        click.echo(f"Spritesheet saved to {Path(output_path).parent}")
    else:
        click.echo(f"Sprites saved to {Path(output_path).parent}")
    click.echo(f"Layer metadata saved to {metadata_path}")


if __name__ == "__main__":
    main()
