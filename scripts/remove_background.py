from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vn_imagegen.config import load_config
from vn_imagegen.matting import matte
from vn_imagegen.transport import sniff_media_type
from vn_imagegen.types import Asset


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Make the flat backdrop of a sprite image transparent.")
    parser.add_argument("input", type=Path, help="Image to process.")
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        default=None,
        help="Output PNG path (defaults to <input>-matted.png).",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Optional path to a .env file with MATTING_* overrides.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    console = Console()
    logging.basicConfig(level=logging.INFO, format="%(message)s", handlers=[RichHandler(console=console)])

    if not args.input.exists():
        console.print(f"[red]Input image not found:[/red] {args.input}")
        raise SystemExit(1)

    settings = load_config(args.dotenv).matting
    data = args.input.read_bytes()
    result, report = matte(Asset(data=data, media_type=sniff_media_type(data)), settings)

    if report.model is not None:
        table = Table(title="Background model")
        table.add_column("edge")
        table.add_column("median RGB")
        for name, color in zip(("top", "bottom", "left", "right"), report.model.edge_colors):
            table.add_row(name, str(color))
        console.print(table)
        console.print(
            f"kind={report.model.kind} threshold={report.model.threshold:.0f} "
            f"feather={report.model.feather:.0f} background={report.background_fraction:.1%}"
        )

    if not report.applied:
        console.print(f"[yellow]Image left unchanged ({report.reason}).[/yellow]")

    output = args.output or args.input.with_name(f"{args.input.stem}-matted.png")
    output.write_bytes(result.data)
    console.print(f"[green]Saved[/green] {output}")


if __name__ == "__main__":
    main()
