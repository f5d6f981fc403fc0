#!/usr/bin/env python3
"""
Command-line runner: fit an ecological-distance SCR model and write
parameter estimates and connectivity surfaces.
"""

import sys
from pathlib import Path
import logging
from datetime import datetime
import argparse
from typing import Dict, List, Optional

import pandas as pd

from .config import SCRConfig
from .connectivity import derive_connectivity
from .exceptions import SCRError, ConvergenceFailure
from .landscape import Grid
from .scr import EncounterData, TrapSet, fit, predict_posteriors, PARAM_NAMES

logger = logging.getLogger(__name__)

DEFAULT_THETA0 = (-2.0, -1.0, 2.0, 0.0)

def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs",
                  log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s') -> logging.Logger:
    """Setup logging configuration."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = None
    if log_dir:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = logs_dir / f"scr_connectivity_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format,
        handlers=handlers,
        force=True
    )

    run_logger = logging.getLogger(__name__)
    run_logger.info(f"Logging initialized - log file: {log_file}")
    return run_logger

def parse_fixed(items: Optional[List[str]]) -> Dict[str, float]:
    """Parse NAME=VALUE pairs into a fixed-parameter mapping."""
    fixed = {}
    for item in items or []:
        name, sep, value = item.partition('=')
        if not sep or name not in PARAM_NAMES:
            raise argparse.ArgumentTypeError(
                f"Invalid --fix {item!r}; expected NAME=VALUE with NAME in {PARAM_NAMES}"
            )
        fixed[name] = float(value)
    return fixed

def load_grid(path: str, config: SCRConfig, value_col: str = 'covariate') -> Grid:
    """Covariate grid from a GeoTIFF or a cell table (x, y, covariate)."""
    path = Path(path)
    if path.suffix.lower() in ('.tif', '.tiff'):
        grid = Grid.from_raster(path)
    else:
        df = pd.read_csv(path)
        nodata = config.landscape.nodata_value
        if nodata is not None and value_col in df.columns:
            df = df[df[value_col] != nodata]
        grid = Grid.from_frame(df, value_col=value_col)
        logger.info(f"Loaded grid table {path}: {grid.n_cells} cells")

    if config.landscape.standardize_covariate:
        grid = grid.standardized()
    return grid

def load_traps(path: str, n_occasions: Optional[int] = None,
               id_col: Optional[str] = 'trap', occasion_prefix: str = 'occ') -> TrapSet:
    """Trap table with x, y, an optional id column and 0/1 occasion columns."""
    df = pd.read_csv(path)
    if id_col and id_col not in df.columns:
        id_col = None
    occasion_cols = [c for c in df.columns if str(c).startswith(occasion_prefix)]
    if n_occasions is not None:
        occasion_cols = None
    traps = TrapSet.from_frame(df, id_col=id_col, occasion_cols=occasion_cols or None,
                               n_occasions=n_occasions)
    logger.info(f"Loaded {traps.n_traps} traps over {traps.n_occasions} occasions from {path}")
    return traps

def create_sample_config(output_file: str = "config/scr_sample.yml") -> Path:
    """Write the default configuration as an editable YAML file."""
    SCRConfig(use_env=False).save_config(output_file)
    print(f"📝 Sample configuration created: {output_file}")
    return Path(output_file)

def run_fit(args, config: SCRConfig) -> dict:
    """Fit the model and write all outputs."""
    output_dir = Path(args.output_dir or config.reporting.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    grid = load_grid(args.covariate, config)
    traps = load_traps(args.traps, n_occasions=args.n_occasions)
    captures = pd.read_csv(args.captures)
    if args.session_col:
        captures[args.session_col] = captures[args.session_col].astype(str)
    encounters = EncounterData.from_captures(
        captures, traps,
        session_col=args.session_col, session=args.session,
        index_base=args.index_base
    )
    print(f"📊 Encounters: {encounters.summary()}")

    obs_model = args.obs_model or config.detection.observation_model
    metric = args.metric or config.landscape.distance_metric
    directions = args.directions or config.landscape.directions

    result = fit(args.theta0, encounters, traps, grid,
                 connectivity=directions, obs_model=obs_model, metric=metric,
                 fixed=args.fixed, config=config, raise_on_failure=not args.allow_nonconverged,
                 progress=args.progress)

    level = config.reporting.confidence_level
    summary = result.summary(level)
    fit_path = result.to_json(output_dir / "fit.json")
    summary_path = output_dir / "summary.csv"
    summary.to_csv(summary_path, index=False)
    print(f"\n📈 Estimates ({level:.0%} Wald intervals):")
    print(summary.to_string(index=False))

    posteriors = predict_posteriors(result.theta_hat, encounters, traps, grid,
                                    directions, obs_model, metric)
    surfaces = derive_connectivity(result.theta_hat, grid, directions, posteriors, metric)
    surfaces_path = output_dir / "surfaces.csv"
    surfaces.to_frame().to_csv(surfaces_path, index=False)

    written = [fit_path, summary_path, surfaces_path]
    if args.write_rasters or config.reporting.write_rasters:
        for surface in surfaces:
            written.append(surface.to_raster(output_dir / f"{surface.name}.tif", grid))

    config.save_config(str(output_dir / "config_used.yml"))
    return {'success': result.converged, 'outputs': [str(p) for p in written]}

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fit an SCR model with ecological distance and derive connectivity surfaces",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scr-connectivity --covariate forest.tif --traps traps.csv --captures captures.csv
  scr-connectivity --covariate grid.csv --traps traps.csv --captures captures.csv --fix alpha2=0
  scr-connectivity --create-config
        """
    )

    parser.add_argument('--covariate', type=str,
                        help='Covariate raster (GeoTIFF) or cell table CSV (x, y, covariate)')
    parser.add_argument('--traps', type=str,
                        help='Trap CSV with x, y, optional trap id and occ* operational columns')
    parser.add_argument('--captures', type=str,
                        help='Capture CSV with individual, trap, occasion columns')
    parser.add_argument('--n-occasions', type=int,
                        help='Number of occasions when all traps are always operational')
    parser.add_argument('--session-col', type=str, help='Session column of the capture table')
    parser.add_argument('--session', type=str, help='Session to analyse')
    parser.add_argument('--index-base', type=int, default=1,
                        help='Base of trap and occasion indices in the capture table')
    parser.add_argument('--theta0', type=float, nargs=4, default=list(DEFAULT_THETA0),
                        metavar=('ALPHA0', 'ALPHA1', 'N0_LOG', 'ALPHA2'),
                        help='Starting values')
    parser.add_argument('--fix', type=str, action='append',
                        help='Hold a parameter constant, e.g. --fix alpha2=0')
    parser.add_argument('--obs-model', choices=['binomial', 'poisson'], help='Observation model')
    parser.add_argument('--metric', choices=['ecological', 'euclidean'], help='Distance metric')
    parser.add_argument('--directions', type=int, choices=[4, 8, 16], help='Grid connectivity')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--create-config', action='store_true',
                        help='Create sample configuration file')
    parser.add_argument('--output-dir', type=str, help='Output directory')
    parser.add_argument('--write-rasters', action='store_true',
                        help='Also write surfaces as GeoTIFF')
    parser.add_argument('--allow-nonconverged', action='store_true',
                        help='Write outputs even when the optimizer does not converge')
    parser.add_argument('--progress', action='store_true', help='Show an iteration counter')
    parser.add_argument('--log-level', type=str, default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    return parser

def main(argv: Optional[List[str]] = None) -> int:
    """Main SCR connectivity entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.create_config:
        create_sample_config()
        return 0

    missing = [name for name in ('covariate', 'traps', 'captures') if not getattr(args, name)]
    if missing:
        parser.error(f"Missing required arguments: {', '.join('--' + m for m in missing)}")
    try:
        args.fixed = parse_fixed(args.fix)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    config = SCRConfig(args.config)
    log_cfg = config.logging
    setup_logging(args.log_level or log_cfg.level,
                  log_cfg.log_dir if log_cfg.file_handler else None,
                  log_cfg.format)

    if not config.validate_config():
        print("❌ Invalid configuration")
        return 2

    print("🐾 SCR Connectivity - Ecological Distance Capture-Recapture")
    print("=" * 70)
    print(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    config.print_summary()

    try:
        results = run_fit(args, config)
    except ConvergenceFailure as e:
        logger.error(f"Fit failed: {e}")
        print("❌ Optimizer did not converge; try other --theta0 values or --allow-nonconverged")
        return 1
    except SCRError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"❌ {e}")
        return 1

    print(f"\n🎉 SCR fit completed {'(converged)' if results['success'] else '(NOT converged)'}")
    print("📁 Outputs:")
    for path in results['outputs']:
        print(f"   • {path}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
