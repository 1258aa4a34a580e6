"""Run one accessibility simulation from GeoJSON networks and an OD matrix on disk."""

from __future__ import annotations

import argparse
import logging
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from mosh.batch.od_matrix import ODMatrix
from mosh.jobs.manager import JobLifecycleManager
from mosh.jobs.models import JobStatus, SimulationJob
from mosh.jobs.networks import InMemoryNetworkRepository
from mosh.jobs.store import InMemoryJobStore
from mosh.network.domain_types import NETWORK_TYPES, TRANSIT_NETWORK
from mosh.results.export import write_statistics_json, write_trips_csv
from mosh.routing.parameters import SimulationParameters
from mosh.settings import EngineSettings

logger = logging.getLogger(__name__)

BASELINE_ID = "baseline"
PROPOSED_ID = "proposed"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--baseline", required=True, help="Baseline network GeoJSON FeatureCollection.")
    parser.add_argument(
        "--network-type",
        default=TRANSIT_NETWORK,
        choices=list(NETWORK_TYPES),
        help="Type of both networks (biking lanes or transit lines).",
    )
    parser.add_argument("--proposed", default=None, help="Optional proposed network GeoJSON to compare.")
    parser.add_argument("--od-matrix", required=True, help="OD matrix as JSON (pairs or origins/destinations) or CSV.")
    parser.add_argument("--parameters", default=None, help="Simulation parameters YAML.")
    parser.add_argument("--settings", default=None, help="Engine settings YAML.")
    parser.add_argument(
        "--num-workers",
        type=int,
        default=None,
        help="Routing worker processes (overrides settings and WORKER_CONCURRENCY).",
    )
    parser.add_argument(
        "--max-runtime-ms",
        type=int,
        default=None,
        help="Wall-clock budget for the job (overrides settings and MAX_SIMULATION_RUNTIME_MS).",
    )
    parser.add_argument("--output-dir", default="output/simulation", help="Directory for statistics.json and trips.csv.")
    parser.add_argument("--name", default="cli-simulation", help="Job name recorded with the results.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Verbosity for the CLI logger.",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def load_settings(args: argparse.Namespace) -> EngineSettings:
    settings = EngineSettings.load(args.settings)
    overrides = {}
    if args.num_workers is not None:
        overrides["worker_concurrency"] = max(1, args.num_workers)
    if args.max_runtime_ms is not None:
        overrides["max_runtime_ms"] = args.max_runtime_ms
    return replace(settings, **overrides) if overrides else settings


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    settings = load_settings(args)
    params = SimulationParameters.from_yaml(args.parameters) if args.parameters else SimulationParameters()
    od_matrix = ODMatrix.load(args.od_matrix)
    logging.info(
        "Simulating %d OD pairs x %d departures (max_transfers=%d, workers=%d)",
        len(od_matrix),
        len(params.departure_times()),
        params.max_transfers,
        settings.worker_concurrency,
    )

    networks = InMemoryNetworkRepository()
    networks.add_file(BASELINE_ID, args.baseline, args.network_type)
    if args.proposed:
        networks.add_file(PROPOSED_ID, args.proposed, args.network_type)

    store = InMemoryJobStore()
    job = SimulationJob(
        job_id=uuid.uuid4().hex,
        city_id="cli",
        name=args.name,
        baseline_network_id=BASELINE_ID,
        proposed_network_id=PROPOSED_ID if args.proposed else None,
        od_matrix=od_matrix,
        parameters=params,
    )

    progress_console = Console(stderr=True)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        TextColumn("{task.completed:,} trips", justify="right"),
        TimeElapsedColumn(),
        console=progress_console,
        transient=True,
        disable=not progress_console.is_terminal,
    )
    with progress:
        task_id = progress.add_task("Routing", total=None)

        def on_progress(_job_id: str, completed: int, total: int) -> None:
            progress.update(task_id, completed=completed, total=total)

        manager = JobLifecycleManager(store, networks, settings=settings, on_progress=on_progress)
        job_id = manager.submit(job)
        manager.run_pending()

    final = store.get(job_id)
    result = store.get_result(job_id)
    if result is not None:
        out_dir = Path(args.output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        write_statistics_json(result.statistics, out_dir / "statistics.json")
        write_trips_csv(result.trip_details, out_dir / "trips.csv")
        logging.info("Results written to %s", out_dir)

    if final.status != JobStatus.COMPLETED:
        error = final.error
        logging.error(
            "Simulation %s ended %s%s",
            job_id,
            final.status.value,
            f" ({error.kind}: {error.message})" if error else "",
        )
        return 1
    summary = final.results_summary or {}
    logging.info(
        "Simulation complete: %s trips, %s successful, average travel time %.1fs",
        summary.get("totalTrips"),
        summary.get("successfulTrips"),
        float(summary.get("averageTravelTime") or 0.0),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
