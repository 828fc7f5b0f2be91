import argparse
import logging
import os
import sys
from pathlib import Path

import numpy as np

# Ensure repo root is on sys.path when running from anywhere
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config.config_loader import config_value, load_config  # noqa: E402
from spectrum_analysis import SpectrumAnalyzer  # noqa: E402
from spectrum_analysis.core.fits import FitModel  # noqa: E402

OPERATIONS = ('subtract', 'integrate', 'hcm', 'model', 'pca', 'filter')


def _apply_overrides(analyzer, args):
    changes = {}
    if args.model:
        changes['model'] = FitModel.parse(args.model)
    if args.fit:
        changes['fit_window'] = tuple(args.fit)
    if args.int:
        changes['integration_window'] = tuple(args.int)
    if args.pca:
        changes['pca_window'] = tuple(args.pca)
    if args.weighted:
        changes['weighted_pca'] = True
    if args.mean_centering:
        changes['mean_centering'] = True
    if args.oversampling is not None:
        changes['oversampling_fwhm'] = args.oversampling
    if changes:
        analyzer.configure(**changes)


def _print_progress(fraction):
    print(f"\r  progress: {fraction * 100:5.1f}%", end='', flush=True)


def main():
    parser = argparse.ArgumentParser(
        description="Headless spectrum image analysis: background fit → subtract / integrate / PCA"
    )
    parser.add_argument("--cube", required=True, help="NumPy .npy array shaped (channels,), (channels, n) or (channels, h, w)")
    parser.add_argument("--operation", choices=OPERATIONS, default='integrate')
    parser.add_argument("--out", default=str(REPO_ROOT / "output"), help="Output directory")
    parser.add_argument("--config", default=None, help="YAML config (defaults to config/config.yaml)")
    parser.add_argument("--model", default=None, help="Background model: none, constant, linear, exponential, power, lcpl")
    parser.add_argument("--fit", type=int, nargs=2, metavar=("START", "END"), help="Fit window channels")
    parser.add_argument("--int", type=int, nargs=2, metavar=("START", "END"), help="Integration window channels")
    parser.add_argument("--pca", type=int, nargs=2, metavar=("START", "END"), help="PCA window channels")
    parser.add_argument("--weighted", action="store_true", help="Noise-weighted PCA")
    parser.add_argument("--mean-centering", action="store_true", help="Mean-center channels before PCA")
    parser.add_argument("--oversampling", type=float, default=None, help="Spatial FWHM (pixels) applied before fitting")
    parser.add_argument("--components", type=int, default=None,
                        help="Components kept by the PCA reconstruction (pca) or the SVD filter (filter)")
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args()

    config = load_config(args.config)
    level = 'DEBUG' if args.verbose else str(config_value(config, 'logging.level', 'INFO')).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    cube_path = os.path.abspath(args.cube)
    out_root = Path(os.path.abspath(args.out))
    out_root.mkdir(parents=True, exist_ok=True)
    stem = Path(cube_path).stem

    analyzer = SpectrumAnalyzer(np.load(cube_path), config=config)
    _apply_overrides(analyzer, args)
    req = analyzer.request

    print("Running analysis...")
    print(f"  cube: {cube_path} {analyzer.cube!r}")
    print(f"  operation: {args.operation}")
    print(f"  model: {req.model.value}  fit: [{req.fit_window.start}, {req.fit_window.end})")

    outputs = {}
    if args.operation == 'subtract':
        outputs['subtracted'] = analyzer.subtract(progress=_print_progress).data
    elif args.operation == 'integrate':
        outputs['integrated'] = analyzer.integrate(progress=_print_progress)
    elif args.operation == 'hcm':
        outputs['hcm'] = analyzer.hcm_integrate(progress=_print_progress)
    elif args.operation == 'model':
        outputs['scale'], outputs['net'] = analyzer.model_integrate(progress=_print_progress)
    elif args.operation == 'filter':
        if not args.components:
            parser.error("--components is required for --operation filter")
        outputs['svd_filtered'] = analyzer.svd_filter(args.components, progress=_print_progress).data
    else:
        result = analyzer.pca(progress=_print_progress)
        outputs['pca_maps'] = result.maps.reshape((result.component_count,) + analyzer.cube.spatial_shape)
        scree_path = out_root / f"{stem}_scree.csv"
        result.scree_table().to_csv(scree_path, index=False)
        result.spectra_frame().to_csv(out_root / f"{stem}_pca_spectra.csv", index=False)
        print(f"\n  scree: {scree_path}")
        if args.components:
            outputs['pca_filtered'] = analyzer.reconstruct(args.components).data
    print()

    print("\nOutputs")
    print("-------")
    for name, array in outputs.items():
        path = out_root / f"{stem}_{name}.npy"
        np.save(path, np.asarray(array))
        print(f"{name}: {path} shape={np.shape(array)}")


if __name__ == "__main__":
    main()
