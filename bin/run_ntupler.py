#!/usr/bin/env python3
"""Produce a flat VBS ntuple from a list of NanoAOD files.

Examples
--------
  python bin/run_ntupler.py lists/WZ.txt
  python bin/run_ntupler.py lists/WZ.txt --output out/WZ.root --workers 4
  python bin/run_ntupler.py lists/WZ.txt --config cuts.json --maxfiles 1 --debug
"""

import os
os.environ.setdefault("NUMEXPR_MAX_THREADS", "1")

import warnings
warnings.filterwarnings("ignore", category=FutureWarning, module="coffea.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message="Missing cross-reference", module="coffea.*")
import argparse
import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path

from tqdm import tqdm

from vbscoffea.analysis_config import DEFAULT_CONFIG, DEFAULT_REDIRECTOR, load_config
from vbscoffea.ntupler import (
    cutflow_report,
    merge_outputs,
    ntuple_file,
    read_sample_list,
    sample_basename,
    save_cutflow,
    write_ntuple,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@contextmanager
def _local_cluster(*, n_workers, threads_per_worker=1):
    """Set up a local Dask cluster, yield client, clean up on exit."""
    from dask.distributed import Client, LocalCluster

    cluster = LocalCluster(n_workers=n_workers, threads_per_worker=threads_per_worker)
    client = Client(cluster)
    try:
        yield client
    finally:
        client.close()
        cluster.close()


def build_parser():
    parser = argparse.ArgumentParser(
        description="Flat ntupler for VBS semi-leptonic selections.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("sample_list", type=Path, help="Text file with one NanoAOD LFN per line.")
    optional = parser.add_argument_group("Optional arguments")
    optional.add_argument("--output", type=Path, default=None, help="Output ROOT file (default: <sample list name>.root).")
    optional.add_argument("--redirector", type=str, default=DEFAULT_REDIRECTOR, help=f"XRootD redirector prefixed to each LFN (default: {DEFAULT_REDIRECTOR}).")
    optional.add_argument("--config", type=Path, default=None, help="JSON file overriding selection thresholds.")
    optional.add_argument("--workers", type=int, default=1, help="Number of local Dask workers (default: 1, serial).")
    optional.add_argument("--maxfiles", type=int, default=None, help="Max files to process (default: all). Use 1 for quick testing.")
    optional.add_argument("--dataset", type=str, default=None, help="Dataset label stored in the output (default: sample list name).")
    optional.add_argument("--debug", action="store_true", help="Debug mode (verbose logging, don't write output).")
    return parser


def validate_arguments(args, parser):
    if args.workers < 1:
        parser.error("--workers must be >= 1")
    if args.maxfiles is not None and args.maxfiles < 1:
        parser.error("--maxfiles must be >= 1")
    if not args.sample_list.is_file():
        parser.error(f"Sample list not found: {args.sample_list}")


def _run_serial(files, config, dataset):
    results = []
    use_bar = sys.stderr.isatty()
    pbar = tqdm(total=len(files), desc=dataset, unit="file", file=sys.stderr, disable=not use_bar)
    for i, path in enumerate(files):
        if use_bar:
            pbar.set_postfix_str(Path(path).name, refresh=True)
        else:
            logger.info("File %d/%d: %s", i + 1, len(files), path)
        result = ntuple_file(path, config, dataset)
        results.append(result)
        if not use_bar:
            logger.info("  %d -> %d events in %.1f s", result.n_events, result.n_selected, result.elapsed_s)
        pbar.update(1)
    pbar.close()
    return results


def _run_dask(files, config, dataset, n_workers):
    with _local_cluster(n_workers=n_workers) as client:
        futures = client.map(ntuple_file, files, config=config, dataset=dataset, pure=False)
        results = client.gather(futures)
    for result in results:
        logger.info("%s: %d -> %d events in %.1f s", result.path, result.n_events, result.n_selected, result.elapsed_s)
    return results


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_arguments(args, parser)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config) if args.config else DEFAULT_CONFIG
    basename = sample_basename(args.sample_list)
    dataset = args.dataset or basename
    output = args.output or Path(f"{basename}.root")

    files = read_sample_list(args.sample_list, args.redirector)
    if args.maxfiles is not None:
        files = files[: args.maxfiles]
    if not files:
        logger.error("No input files in %s", args.sample_list)
        return 1
    logger.info("Ntupling %d file(s) from %s", len(files), args.sample_list)

    t0 = time.monotonic()
    try:
        if args.workers > 1:
            results = _run_dask(files, config, dataset, args.workers)
        else:
            results = _run_serial(files, config, dataset)
    except Exception:
        logging.exception("Processing failed; no output written.")
        raise

    merged = merge_outputs([r.output for r in results])[dataset]
    logger.info("Cutflow for %s:", dataset)
    cutflow_report(merged["cutflow"])

    if not args.debug:
        write_ntuple(output, merged["records"])
        save_cutflow(output.with_name(f"{output.stem}_cutflow.json"), merged["cutflow"])

    exec_time = time.monotonic() - t0
    logger.info(f"Execution took {exec_time/60:.2f} minutes")
    return 0


if __name__ == "__main__":
    sys.exit(main())
