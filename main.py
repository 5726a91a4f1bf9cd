#!/usr/bin/env python3
"""
POOL MATERIAL VISUALIZER - Command Line

Headless previews and measurements for masks drawn over a pool photo.

    python main.py render photo.jpg masks.json --texture tile.png -o preview.png
    python main.py measure masks.json --ppm 42
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import cv2

import calibration
import config
import presets
from geometry import Mask, mask_edges
from processing import TextureLoadError, auto_calibrate_settings, load_texture
from services import CompositeCache, MaskCompositor, MemoryManager, TextureCache
from services.compositor import overlay

logger = logging.getLogger(__name__)


def load_masks(path: str) -> list:
    """Read masks from a JSON file holding a list or {"masks": [...]}."""
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('masks', [])
    return [Mask.from_dict(item) for item in data]


def build_settings(args) -> dict:
    """Preset settings with any command-line overrides applied."""
    settings = dict(presets.get_preset(args.preset)['settings'])
    overrides = {
        'blend': args.blend,
        'refraction': args.refraction,
        'edgeSoftness': args.edge_softness,
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})
    if args.no_underwater:
        settings['enabled'] = False
    return presets.clamp_settings(settings)


def cmd_render(args) -> int:
    try:
        photo = load_texture(args.photo)
    except TextureLoadError as e:
        logger.error("Could not read photo: %s", e)
        return 1
    height, width = photo.shape[:2]
    masks = [m for m in load_masks(args.masks) if m.is_closed]
    if not masks:
        logger.error("No area masks in %s", args.masks)
        return 1

    base_settings = build_settings(args)
    entries = MemoryManager().get_result_cache_entries(width, height)
    compositor = MaskCompositor(TextureCache(), CompositeCache(max_entries=entries))

    result = photo
    try:
        for mask in masks:
            settings = dict(base_settings)
            if args.auto_calibrate:
                settings.update(auto_calibrate_settings(photo, mask.points))
            future = compositor.render(mask, args.texture, presets.UnderwaterSettings.from_dict(settings),
                                       args.scale, background=photo)
            composite = future.result(timeout=config.FETCH_TIMEOUT_SECONDS * 2)
            if not composite.success:
                logger.warning("Mask %s: %s", mask.id, composite.error)
            result = overlay(result, composite, mask)
            logger.info("Rendered mask %s in %.1f ms", mask.id, composite.processing_time)
    except TextureLoadError as e:
        logger.error("%s", e)
        return 1
    finally:
        compositor.texture_cache.shutdown()

    out = Path(args.output)
    if not cv2.imwrite(str(out), cv2.cvtColor(result, cv2.COLOR_RGBA2BGRA)):
        logger.error("Could not write %s", out)
        return 1
    print(f"Wrote {out}")
    return 0


def cmd_measure(args) -> int:
    masks = load_masks(args.masks)
    report = []
    for mask in masks:
        edges = mask_edges(mask)
        summary = calibration.measure_mask(mask, args.ppm or 0.0)
        summary['id'] = mask.id
        summary['type'] = mask.type
        summary['edges'] = [round(e.pixel_length, 2) for e in edges]

        measurements = (mask.custom_calibration.edge_measurements
                        if mask.custom_calibration and mask.custom_calibration.edge_measurements else [])
        if measurements:
            summary['warnings'] = calibration.validate_edge_measurements(edges, measurements).warnings
        report.append(summary)

    if args.json:
        print(json.dumps(report, indent=2))
        return 0

    for item in report:
        method = item['method'] or 'uncalibrated'
        print(f"{item['id']} ({item['type']}, {method})")
        print(f"  edges (px): {item['edges']}")
        print(f"  pixels/m:   {item['pixels_per_meter']:.2f}")
        if item['type'] == 'area':
            print(f"  area:       {item['area_m2']:.2f} m2")
        print(f"  length:     {item['length_m']:.2f} m")
        for warning in item.get('warnings', []):
            print(f"  warning: {warning}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Pool Material Visualizer')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--log-file', help='Also log to this file')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Composite a material into masks over a photo')
    render.add_argument('photo', help='Photo file')
    render.add_argument('masks', help='Masks JSON file')
    render.add_argument('--texture', required=True, help='Material texture path or URL')
    render.add_argument('--scale', type=float, default=1.0, help='Tile scale')
    render.add_argument('--preset', default='standard', help='Underwater preset key')
    render.add_argument('--blend', type=float)
    render.add_argument('--refraction', type=float)
    render.add_argument('--edge-softness', type=float)
    render.add_argument('--no-underwater', action='store_true', help='Disable the underwater effect')
    render.add_argument('--auto-calibrate', action='store_true',
                        help='Derive tint and blend from the photo under each mask')
    render.add_argument('-o', '--output', default='preview.png', help='Output image')
    render.set_defaults(func=cmd_render)

    measure = sub.add_parser('measure', help='Print calibrated measurements for masks')
    measure.add_argument('masks', help='Masks JSON file')
    measure.add_argument('--ppm', type=float, help='Photo-wide pixels per metre fallback')
    measure.add_argument('--json', action='store_true', help='Machine-readable output')
    measure.set_defaults(func=cmd_measure)

    args = parser.parse_args(argv)
    config.configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
