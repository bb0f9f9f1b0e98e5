"""pointscope entrypoint.

    pointscope capture                 one snapshot, exit code per failure class
    pointscope report                  growth + inflation report from history
    pointscope predict --target-date   expected points total on a date
    pointscope calc --yt N             points and yield for a YT position
    pointscope serve                   HTTP API
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pointscope.calculator import (
    MARKETS,
    MarketKey,
    daily_points,
    days_to_expiry,
    effective_leverage,
    estimated_yield,
    total_points,
)
from pointscope.capture import CaptureOrchestrator
from pointscope.config import settings
from pointscope.core.errors import CaptureError, PersistenceFailure, ProjectionError
from pointscope.core.formatting import format_large_number, format_percent
from pointscope.projection.emission import project
from pointscope.projection.growth import Metric
from pointscope.projection.predictor import GrowthInputs, TvlMode, predict_points
from pointscope.projection.report import PROJECTION_HORIZONS, build_inflation_report
from pointscope.sources.points import PointsSource
from pointscope.sources.tvl import TvlSource
from pointscope.storage.base import SnapshotStore, StoreError, build_store
from pointscope.storage.models import Snapshot

logger = logging.getLogger("pointscope")

_console = Console()

EXIT_OK = 0
EXIT_STORE = 4


# ── logging ───────────────────────────────────────────────────────────────────


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


# ── rendering ─────────────────────────────────────────────────────────────────


def _render_snapshot(snapshot: Snapshot, points_error: str = "") -> Panel:
    s = snapshot.summary
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold dim", no_wrap=True)
    table.add_column()

    table.add_row("Captured", snapshot.captured_at.isoformat())
    table.add_row("Raw TVL", f"${format_large_number(s.total_raw_tvl)}")
    table.add_row("Weighted TVL", f"${format_large_number(s.total_weighted_tvl)}")
    table.add_row("Est. daily points", format_large_number(s.est_daily_points))
    if s.points_available:
        table.add_row("Cumulative points", format_large_number(s.cumulative_points))
        table.add_row("Participants", f"{s.participant_count:,}")
    else:
        table.add_row("Points", Text(f"unavailable ({points_error})", style="bold yellow"))

    return Panel(
        table,
        title=f"[bold]Snapshot {snapshot.id if snapshot.id is not None else ''}[/bold]",
        title_align="left",
        border_style="green" if s.points_available else "yellow",
        padding=(1, 2),
    )


# ── commands ──────────────────────────────────────────────────────────────────


async def _with_store(store: SnapshotStore, fn):
    await store.init()
    try:
        return await fn(store)
    finally:
        await store.close()


async def cmd_capture(args: argparse.Namespace) -> int:
    async def run(store: SnapshotStore) -> int:
        orchestrator = CaptureOrchestrator(
            tvl_source=TvlSource(),
            points_source=PointsSource(),
            store=store,
            warmup=not args.no_warmup,
        )
        try:
            snapshot = await orchestrator.capture_once()
        except PersistenceFailure as exc:
            _console.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
            if exc.snapshot is not None:
                # Raw JSON on stdout, ready to POST to /snapshots
                print(json.dumps(exc.snapshot.to_json()))
            return exc.exit_code
        except CaptureError as exc:
            _console.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
            return exc.exit_code
        finally:
            logger.debug("capture states: %s", " -> ".join(orchestrator.transitions))
        result = orchestrator.last_result
        _console.print(_render_snapshot(snapshot, result.points_error if result else ""))
        if result and result.missing_rows:
            _console.print(f"[yellow]Rows without data:[/yellow] {', '.join(sorted(result.missing_rows))}")
        return EXIT_OK

    return await _with_store(build_store(), run)


async def _load_report(store: SnapshotStore, last: int | None = None):
    history = await store.read_all()
    if last:
        # Most recent `last` snapshots, still oldest first
        history = history[-last:]
    return build_inflation_report(history)


async def cmd_report(args: argparse.Namespace) -> int:
    report = await _with_store(build_store(), lambda store: _load_report(store, args.last))
    latest = report.newest.summary

    rates = Table(title="Growth rates", title_justify="left")
    rates.add_column("Metric")
    rates.add_column("Daily", justify="right")
    rates.add_column("Weekly", justify="right")
    for metric in Metric:
        rate = report.growth.get(metric)
        rates.add_row(
            str(metric),
            format_percent(rate.daily_rate_percent) if rate else "n/a",
            format_percent(rate.weekly_rate_percent) if rate else "n/a",
        )

    proj = Table(title="Projected points total", title_justify="left")
    proj.add_column("Days", justify="right")
    proj.add_column("Linear", justify="right")
    proj.add_column("Direct compound", justify="right")
    proj.add_column("TVL-scaled emission", justify="right")
    points_rate = report.growth.get(Metric.POINTS)
    for days in PROJECTION_HORIZONS:
        direct = (
            format_large_number(project(report.current_total, points_rate, days))
            if points_rate else "n/a"
        )
        scaled_total = report.emission_projection(days)
        scaled = format_large_number(scaled_total) if scaled_total is not None else "n/a"
        proj.add_row(str(days), format_large_number(report.projected_total(days)), direct, scaled)

    header = Table.grid(padding=(0, 2))
    header.add_column(style="bold dim", no_wrap=True)
    header.add_column()
    header.add_row(
        "Range",
        f"{report.oldest.captured_at.date()} → {report.newest.captured_at.date()} "
        f"({report.total_days} days, {report.snapshot_count} snapshots)",
    )
    header.add_row("Cumulative points", format_large_number(latest.cumulative_points))
    header.add_row("Points issued", format_large_number(report.points_issued))
    header.add_row("Actual daily rate", format_large_number(report.actual_daily_rate))
    header.add_row("Daily inflation", format_percent(report.inflation_percent(1)))
    header.add_row("Efficiency", format_percent(report.efficiency_rate))

    _console.print(Panel(header, title="[bold]Inflation report[/bold]", title_align="left"))
    _console.print(rates)
    _console.print(proj)
    return EXIT_OK


async def cmd_predict(args: argparse.Namespace) -> int:
    report = await _with_store(build_store(), _load_report)
    prediction = predict_points(
        GrowthInputs.from_report(report),
        args.target_date,
        TvlMode(args.tvl_mode),
        args.growth_pct,
    )
    if not prediction.is_valid:
        _console.print(f"[yellow]Target date {args.target_date} is not after the latest data[/yellow]")
        return EXIT_OK

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold dim", no_wrap=True)
    table.add_column()
    table.add_row("Days ahead", str(prediction.days_between))
    table.add_row("Predicted points", format_large_number(prediction.predicted_points))
    table.add_row("Points growth", format_percent(prediction.points_growth_percent))
    table.add_row("Predicted TVL", f"${format_large_number(prediction.predicted_tvl)}")
    table.add_row("TVL growth", format_percent(prediction.tvl_growth_percent))
    table.add_row("Daily TVL rate used", format_percent(prediction.tvl_growth_rate_used))
    _console.print(
        Panel(table, title=f"[bold]Prediction for {args.target_date}[/bold]", title_align="left")
    )
    return EXIT_OK


def cmd_calc(args: argparse.Namespace) -> int:
    market = MARKETS[MarketKey(args.market)]
    days = args.days if args.days is not None else days_to_expiry(market.expiry)

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold dim", no_wrap=True)
    table.add_column()
    table.add_row("Market", market.description)
    table.add_row("Expiry", f"{market.expiry.date()} ({days} days)")
    table.add_row("Daily points", format_large_number(daily_points(args.yt, market.key)))
    table.add_row("Points to expiry", format_large_number(total_points(args.yt, market.key, days)))
    if market.has_underlying_yield and args.apy is not None:
        earned = estimated_yield(args.yt, args.apy / 100, days)
        table.add_row("Est. yield", f"${format_large_number(earned)}")
    if args.input is not None:
        table.add_row("Effective leverage", f"{effective_leverage(args.input, args.yt):.2f}x")
    _console.print(
        Panel(table, title=f"[bold]{format_large_number(args.yt)} YT-{market.key}[/bold]", title_align="left")
    )
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    from pointscope.api.app import create_app

    uvicorn.run(
        create_app(),
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_level="warning",
    )
    return EXIT_OK


# ── argument parsing ──────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pointscope", description=__doc__.splitlines()[0])
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="capture one snapshot")
    capture.add_argument("--no-warmup", action="store_true", help="skip the availability ping")

    report = sub.add_parser("report", help="print the growth and inflation report")
    report.add_argument("--last", type=int, default=None, help="only use the most recent N snapshots")

    predict = sub.add_parser("predict", help="predict the points total on a date")
    predict.add_argument("--target-date", type=date.fromisoformat, required=True)
    predict.add_argument("--tvl-mode", choices=[m.value for m in TvlMode], default=TvlMode.AUTO.value)
    predict.add_argument(
        "--growth-pct", type=float, default=0.0, help="total TVL growth for --tvl-mode custom"
    )

    calc = sub.add_parser("calc", help="points and yield for a YT position held to expiry")
    calc.add_argument("--yt", type=float, required=True, help="YT amount held")
    calc.add_argument("--market", choices=[m.value for m in MarketKey], default=MarketKey.NUSD.value)
    calc.add_argument("--days", type=int, default=None, help="holding period, defaults to days to expiry")
    calc.add_argument("--apy", type=float, default=None, help="underlying APY in percent")
    calc.add_argument("--input", type=float, default=None, help="amount spent, for effective leverage")

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "calc":
        return cmd_calc(args)

    commands = {"capture": cmd_capture, "report": cmd_report, "predict": cmd_predict}
    try:
        return asyncio.run(commands[args.command](args))
    except ProjectionError as exc:
        _console.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
        return exc.exit_code
    except StoreError as exc:
        _console.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
        return EXIT_STORE


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
