from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.table import Table

from .audio import SAMPLE_RATE
from .canonicalize import Correction, canonicalize_with_report
from .dx import render, render_batch
from .logging_utils import configure_logging, debug_enabled, log_exception
from .spinner import Spinner, render_error

_LOGGER = logging.getLogger("layersynth.cli")
_CONSOLE = Console()


def _corrections_table(corrections: Iterable[Correction]) -> Table:
    table = Table(title="Corrections")
    table.add_column("path")
    table.add_column("original")
    table.add_column("value")
    table.add_column("reason")
    for correction in corrections:
        table.add_row(
            correction.path, repr(correction.original), repr(correction.value), correction.reason
        )
    return table


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="layersynth")
    sub = parser.add_subparsers(dest="command", required=True)

    render_cmd = sub.add_parser("render", help="Render one sound config to a wav file.")
    render_cmd.add_argument("config", type=Path)
    render_cmd.add_argument("-o", "--output", type=Path, default=None)
    render_cmd.add_argument("--seed", type=int, default=None)
    render_cmd.add_argument(
        "--report", action="store_true", help="Show every value the validator corrected."
    )

    batch_cmd = sub.add_parser("batch", help="Render several configs concurrently.")
    batch_cmd.add_argument("configs", type=Path, nargs="+")
    batch_cmd.add_argument("-d", "--output-dir", type=Path, default=Path("."))
    batch_cmd.add_argument("--seed", type=int, default=None)
    return parser


def _render_one(args: argparse.Namespace) -> int:
    result = canonicalize_with_report(args.config.read_text(encoding="utf-8"))
    if args.report:
        if result.corrections:
            _CONSOLE.print(_corrections_table(result.corrections))
        else:
            _CONSOLE.print("No corrections.")
    output = args.output or args.config.with_suffix(".wav")
    with Spinner(f"Rendering {result.config.metadata.name}"):
        sound = render(result.config, seed=args.seed)
    path = sound.save(output)
    _CONSOLE.print(f"Wrote {path} ({sound.duration:.2f}s, sr={SAMPLE_RATE})")
    return 0


def _render_many(args: argparse.Namespace) -> int:
    documents = [path.read_text(encoding="utf-8") for path in args.configs]
    with Spinner(f"Rendering {len(documents)} sounds"):
        items = render_batch(documents, seed=args.seed)
    args.output_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    for item, source in zip(items, args.configs):
        if item.sound is not None:
            path = item.sound.save(args.output_dir / f"{source.stem}.wav")
            _CONSOLE.print(f"Wrote {path}")
        else:
            failures += 1
            assert item.error is not None
            render_error(str(source), item.error)
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "render":
            return _render_one(args)
        if args.command == "batch":
            return _render_many(args)

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("layersynth CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("layersynth CLI", exc)
        render_error("layersynth CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
