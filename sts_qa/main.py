#!/usr/bin/env python3
r"""
STS track-finding QA runner.

Reads the truth and reconstruction tables of a run from a directory, matches
every reconstructed track to the simulated particles, and reports

- track-finding efficiencies for all, vertex, reference and secondary
  reconstructible tracks, :math:`\varepsilon = N_\mathrm{rec}/N_\mathrm{acc}`,
- ghost and clone rates per event,
- efficiency curves versus momentum, number of points and vertex :math:`z`,
  with binomial errors :math:`\sqrt{\varepsilon(1-\varepsilon)/N}`.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   sts-qa -i run_0001/ -o qa.json
   sts-qa -i run_0001/ -c qa_config.json --variant reconstruction --workers 4 -v
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from sts_qa.accumulators import RunAccumulators
from sts_qa.config import VARIANTS, QaConfig, config_from_mapping, load_config
from sts_qa.data import available_inputs, events_from_tables, read_tables, write_results
from sts_qa.qa import QaContext, TrackQa
from sts_qa.runner import run_events, run_events_parallel


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface of the QA runner.

    Returns
    -------
    argparse.ArgumentParser

    Notes
    -----
    Command-line values override those read from ``--config``.
    """
    p = argparse.ArgumentParser(description="Run the STS track-finding QA over a directory of event tables.")
    p.add_argument("-i", "--input", type=str, required=True,
                   help="Directory with mc_tracks, sts_points, sts_hits and sts_tracks tables (CSV or parquet).")
    p.add_argument("-c", "--config", type=str, default=None,
                   help="JSON configuration file (defaults are used when omitted).")
    p.add_argument("-o", "--output", type=str, default=None,
                   help="Write summary and histograms as JSON to this file.")
    p.add_argument("--variant", type=str, choices=VARIANTS, default=None,
                   help="QA flavour: station-count (find-tracks) or hit-count (reconstruction) criterion.")
    p.add_argument("--quota", type=float, default=None,
                   help="Minimum fraction of true hits for a match (inclusive).")
    p.add_argument("--min-stations", type=int, default=None,
                   help="Minimum number of stations of a reconstructible track.")
    p.add_argument("--workers", type=int, default=None,
                   help="Worker threads; 1 runs sequentially.")
    p.add_argument("-n", "--n-events", type=int, default=None,
                   help="Process at most this many events.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.

    Notes
    -----
    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration keys set explicitly on the command line."""
    pairs = {
        "variant": args.variant,
        "quota": args.quota,
        "min_stations": args.min_stations,
        "workers": args.workers,
    }
    return {k: v for k, v in pairs.items() if v is not None}


def resolve_config(config_arg: Optional[str], overrides: Dict[str, Any]) -> QaConfig:
    if config_arg is None:
        return config_from_mapping(overrides)
    cfg_path = Path(config_arg)
    logging.info("Reading config from %s", cfg_path)
    return load_config(cfg_path, overrides)


def main(argv: Optional[List[str]] = None) -> None:
    r"""
    End-to-end QA: **config → tables → events → match/classify → summary**.

    Pipeline
    --------
    1. Parse CLI (:func:`build_parser`) and set up logging (:func:`setup_logging`).
    2. Load the configuration (file plus command-line overrides).
    3. Read the event tables (:func:`sts_qa.data.read_tables`).
    4. Initialise the selected QA variant and process all events, in parallel
       when ``workers > 1``.
    5. Reduce to the run summary and optionally write it to ``--output``.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    config = resolve_config(args.config, cli_overrides(args))
    input_dir = Path(args.input)
    logging.info("Reading event tables from %s", input_dir)

    qa = TrackQa(config)
    qa.initialize(QaContext(setup=config.detector_setup(), inputs=available_inputs(input_dir)))

    events = events_from_tables(read_tables(input_dir))
    if args.n_events is not None:
        events = events[: args.n_events]
    logging.info("Running on %d events", len(events))

    acc = RunAccumulators(hist_config=config.histograms, species=config.species)
    if config.workers > 1:
        run_events_parallel(qa, events, acc, workers=config.workers)
    else:
        run_events(qa, events, acc)

    summary = qa.finish(acc)
    if args.output:
        write_results(Path(args.output), summary, acc, matching=qa.matcher.statistics, config=config)


if __name__ == "__main__":
    main()
