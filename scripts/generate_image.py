from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from vn_imagegen.config import load_config
from vn_imagegen.errors import AllProvidersFailed
from vn_imagegen.pipeline import ImageGenerationPipeline
from vn_imagegen.transport import sniff_media_type
from vn_imagegen.types import Asset, GenerationRequest, Purpose, StyleParameters


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate or edit one image through the configured provider fallback chain."
    )
    parser.add_argument(
        "purpose",
        choices=[purpose.value for purpose in Purpose],
        help="What the image is for; edit purposes need --reference.",
    )
    parser.add_argument("prompt", type=str, help="Final prompt text sent to the backend.")
    parser.add_argument("--reference", type=Path, default=None, help="Reference/source image for edits.")
    parser.add_argument("--output", type=Path, default=Path("output.png"), help="Where to write the image.")
    parser.add_argument("--width", type=int, default=None)
    parser.add_argument("--height", type=int, default=None)
    parser.add_argument("--strength", type=float, default=None, help="Denoise strength for edits (0-1).")
    parser.add_argument("--guidance", type=float, default=None, help="Guidance / CFG scale.")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--matting",
        choices=["auto", "on", "off"],
        default="auto",
        help="Background removal: per-purpose default, always, or never.",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Optional path to a .env file containing provider credentials.",
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logging.")
    return parser.parse_args()


async def run(args: argparse.Namespace, console: Console) -> int:
    config = load_config(args.dotenv)

    reference: Asset | None = None
    if args.reference is not None:
        data = args.reference.read_bytes()
        reference = Asset(data=data, media_type=sniff_media_type(data))

    request = GenerationRequest(
        purpose=Purpose(args.purpose),
        prompt=args.prompt,
        reference_image=reference,
        style=StyleParameters(
            width=args.width,
            height=args.height,
            strength=args.strength,
            guidance_scale=args.guidance,
            seed=args.seed,
        ),
    )
    matting = {"auto": None, "on": True, "off": False}[args.matting]

    async with ImageGenerationPipeline(config) as pipeline:
        console.print(f"[bold]Providers:[/bold] {', '.join(pipeline.registry.names) or 'none'}")
        result = await pipeline.generate(request, remove_background=matting)

    if result.asset is None:
        failure = result.failure
        console.print(f"[red]Generation failed ({failure.kind if failure else 'unknown'}):[/red] {failure}")
        if isinstance(failure, AllProvidersFailed):
            for name, error in failure.errors.items():
                console.print(f"  [yellow]{name}[/yellow]: {error.kind} - {error.message}")
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(result.asset.data)
    console.print(
        f"[green]Saved[/green] {args.output} ({result.asset.media_type}, "
        f"{len(result.asset.data)} bytes) from [bold]{result.provider_used}[/bold]"
    )
    return 0


def main() -> None:
    args = parse_args()
    console = Console()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    if args.reference is not None and not args.reference.exists():
        console.print(f"[red]Reference image not found:[/red] {args.reference}")
        raise SystemExit(1)

    raise SystemExit(asyncio.run(run(args, console)))


if __name__ == "__main__":
    main()
