#!/usr/bin/env python3
"""Standalone benchmark runner for the ingestkit-workbook pipeline.

Generates a styled workbook programmatically, times the pure row converter
and the full pipeline against an in-memory store, and writes a
benchmark-report-<date>.json file.

Usage:
    python scripts/benchmark.py --iterations 5
    python scripts/benchmark.py --rows 50000 --output-dir reports/
    python scripts/benchmark.py --modes convert      # converter only
    python scripts/benchmark.py --modes pipeline     # full pipeline only
"""

from __future__ import annotations

import argparse
import json
import os
import platform
import statistics
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

import openpyxl
from openpyxl.styles import Font, PatternFill

from ingestkit_workbook.backends import MemoryObjectStore
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.converter import convert_row
from ingestkit_workbook.reader import WorkbookStreamReader
from ingestkit_workbook.router import WorkbookRouter
from ingestkit_workbook.styles import StyleInterner


# ---------------------------------------------------------------------------
# Workbook Generation
# ---------------------------------------------------------------------------


def _create_workbook(path: Path, rows: int, columns: int) -> None:
    """Create a single-sheet workbook with a styled header and mixed values."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Data"
    header_font = Font(bold=True)
    header_fill = PatternFill(fill_type="solid", fgColor="FFDDEEFF")
    for col in range(1, columns + 1):
        cell = ws.cell(row=1, column=col, value=f"Column {col}")
        cell.font = header_font
        cell.fill = header_fill
    for r in range(2, rows + 2):
        for col in range(1, columns + 1):
            if col == 1:
                ws.cell(row=r, column=col, value=f"{r // 100}.{r % 100}")
            elif col % 3 == 0:
                ws.cell(row=r, column=col, value=r * col * 0.5)
            else:
                ws.cell(row=r, column=col, value=f"R{r}C{col}")
    wb.save(path)


# ---------------------------------------------------------------------------
# Benchmark Runner
# ---------------------------------------------------------------------------


def _compute_percentiles(values: list[float]) -> dict[str, float]:
    """Compute p50, p95, and max for a list of values."""
    if not values:
        return {"p50": 0.0, "p95": 0.0, "max": 0.0}
    sorted_v = sorted(values)
    n = len(sorted_v)
    return {
        "p50": sorted_v[int(n * 0.5)],
        "p95": sorted_v[min(int(n * 0.95), n - 1)],
        "max": sorted_v[-1],
    }


def _summarize(times: list[float], rows: int) -> dict:
    total_time = sum(times)
    total_rows = rows * len(times)
    return {
        "throughput_rows_per_sec": round(total_rows / total_time, 2) if total_time > 0 else 0,
        "latency": _compute_percentiles(times),
        "iterations": len(times),
        "total_rows": total_rows,
        "avg_time_sec": round(statistics.mean(times), 4),
        "min_time_sec": round(min(times), 4),
        "max_time_sec": round(max(times), 4),
    }


def _run_convert_benchmark(path: Path, config: WorkbookProcessorConfig, iterations: int) -> dict:
    """Time reading plus ``convert_row`` with no store I/O."""
    times = []
    rows = 0
    for i in range(iterations):
        start = time.monotonic()
        interner = StyleInterner()
        rows = 0
        with WorkbookStreamReader(path, config) as reader:
            for _, source_rows in reader.sheets():
                for source_row in source_rows:
                    convert_row(source_row, interner)
                    rows += 1
        elapsed = time.monotonic() - start
        times.append(elapsed)
        print(f"  [convert] iteration {i + 1}/{iterations}: {elapsed:.3f}s ({rows} rows, {len(interner)} styles)")
    return _summarize(times, rows)


def _run_pipeline_benchmark(path: Path, config: WorkbookProcessorConfig, iterations: int) -> dict:
    """Time the full pipeline writing into a fresh in-memory store."""
    times = []
    rows = 0
    for i in range(iterations):
        router = WorkbookRouter(MemoryObjectStore(), config)
        start = time.monotonic()
        result = router.process(path, output_prefix=f"bench/{i}")
        elapsed = time.monotonic() - start
        times.append(elapsed)
        rows = result.manifest.total_rows
        print(
            f"  [pipeline] iteration {i + 1}/{iterations}: {elapsed:.3f}s "
            f"({len(result.manifest.chunks)} chunks)"
        )
    return _summarize(times, rows)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run ingestkit-workbook benchmarks and produce a JSON report."
    )
    parser.add_argument("--iterations", type=int, default=5, help="Iterations per mode (default: 5)")
    parser.add_argument("--rows", type=int, default=20_000, help="Data rows to generate (default: 20000)")
    parser.add_argument("--columns", type=int, default=12, help="Columns to generate (default: 12)")
    parser.add_argument("--chunk-size", type=int, default=2000, help="Rows per chunk (default: 2000)")
    parser.add_argument(
        "--output-dir",
        type=str,
        default=".",
        help="Directory for the benchmark report (default: current dir)",
    )
    parser.add_argument(
        "--modes",
        nargs="+",
        choices=["convert", "pipeline"],
        default=["convert", "pipeline"],
        help="Which modes to benchmark (default: convert pipeline)",
    )
    args = parser.parse_args()

    config = WorkbookProcessorConfig(
        tenant_id="benchmark",
        chunk_size=args.chunk_size,
        extract_assets=False,
    )
    report: dict = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "platform": {
            "os": platform.platform(),
            "python": platform.python_version(),
            "cpu_count": os.cpu_count(),
        },
        "config": {
            "iterations": args.iterations,
            "rows": args.rows,
            "columns": args.columns,
            "chunk_size": args.chunk_size,
            "modes": args.modes,
        },
    }

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "benchmark.xlsx"
        print(f"Generating {args.rows} x {args.columns} workbook...")
        _create_workbook(path, args.rows, args.columns)
        report["config"]["file_size_bytes"] = path.stat().st_size

        if "convert" in args.modes:
            print(f"\nRunning converter benchmark ({args.iterations} iterations)...")
            report["convert"] = _run_convert_benchmark(path, config, args.iterations)

        if "pipeline" in args.modes:
            print(f"\nRunning pipeline benchmark ({args.iterations} iterations)...")
            report["pipeline"] = _run_pipeline_benchmark(path, config, args.iterations)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now().strftime("%Y%m%d")
    report_path = output_dir / f"benchmark-report-{date_str}.json"
    with open(report_path, "w") as f:
        json.dump(report, f, indent=2)

    print("\n" + "=" * 60)
    print("BENCHMARK SUMMARY")
    print("=" * 60)
    for mode in ("convert", "pipeline"):
        if mode in report:
            print(f"  {mode}: {report[mode]['throughput_rows_per_sec']:.1f} rows/sec")
    print(f"\n  Report: {report_path}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
