"""Command-line entry point.

Usage:
    # List pages of a Figma file
    design-qa pages "https://www.figma.com/design/AbCdEf1234/My-App"

    # List importable frames on a page
    design-qa frames AbCdEf1234 --page 0:1

    # Import a page into a directory (images + text notes)
    design-qa import AbCdEf1234 --page 0:1 -o output/import

    # Generate test cases from local files and/or a Figma page
    design-qa generate spec.md screen.png --figma AbCdEf1234 --page 0:1 -o output/testcases.xlsx

Requires:
    - FIGMA_TOKEN env var (or --token) for Figma commands
    - GEMINI_API_KEY env var for generate
"""

from __future__ import annotations

import argparse
import asyncio
import re
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .bundle import ContentItem, load_content_items
from .cancellation import CancelToken, OperationCancelled
from .config import FIGMA_TOKEN
from .export.excel import export_to_excel
from .generation.llm_utils import GeminiModelClient, GenerationFailedError
from .generation.orchestrator import TestCaseGenerator
from .integrations.figma_client import FigmaClientError
from .integrations.figma_importer import import_page, list_frames, list_pages
from .integrations.relay_fetch import FetchError
from .logging_config import setup_logger

DEFAULT_EXCEL_PATH = "output/testcases.xlsx"
DEFAULT_IMPORT_DIR = "output/import"

_UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|]+')


def step(msg: str) -> None:
    """Print a step header."""
    print(f"\n{'=' * 60}")
    print(f"  {msg}")
    print(f"{'=' * 60}")


def progress(msg: str) -> None:
    print(f"  ... {msg}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="design-qa",
        description="Generate QA test cases from Figma designs and documents",
    )
    parser.add_argument("--token", default=FIGMA_TOKEN, help="Figma personal access token")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("pages", help="List pages (canvases) of a Figma file")
    p.add_argument("document", help="Figma file URL or file key")

    p = sub.add_parser("frames", help="List importable frames on a page")
    p.add_argument("document", help="Figma file URL or file key")
    p.add_argument("--page", required=True, help="Page node id (see 'pages')")

    p = sub.add_parser("import", help="Import a page as images and text notes")
    p.add_argument("document", help="Figma file URL or file key")
    p.add_argument("--page", required=True, help="Page node id")
    p.add_argument("--node", action="append", default=None, help="Only import this node id (repeatable)")
    p.add_argument(
        "-o", "--output-dir", default=DEFAULT_IMPORT_DIR,
        help=f"Directory for imported files (default: {DEFAULT_IMPORT_DIR})",
    )

    p = sub.add_parser("generate", help="Generate test cases and export them to Excel")
    p.add_argument("files", nargs="*", help="Local documents or screenshots")
    p.add_argument("--figma", default=None, help="Figma file URL or key to import")
    p.add_argument("--page", default=None, help="Page node id (required with --figma)")
    p.add_argument("--node", action="append", default=None, help="Only import this node id (repeatable)")
    p.add_argument("--style", default="", help="Style notes / feedback for the model")
    p.add_argument(
        "-o", "--output", default=DEFAULT_EXCEL_PATH,
        help=f"Excel output path (default: {DEFAULT_EXCEL_PATH})",
    )

    args = parser.parse_args(argv)
    if args.command == "generate":
        if args.figma and not args.page:
            parser.error("--page is required with --figma")
        if not args.files and not args.figma:
            parser.error("provide at least one file or --figma")
    return args


def safe_filename(name: str) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", name).strip() or "item"


def write_items(items: Sequence[ContentItem], output_dir: Path) -> List[Path]:
    """Write imported items to disk: images as binary, text as UTF-8."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for item in items:
        path = output_dir / safe_filename(item.name)
        if item.is_image:
            path.write_bytes(item.image_bytes())
        else:
            if not path.suffix:
                path = path.with_suffix(".txt")
            path.write_text(item.content, encoding="utf-8")
        written.append(path)
    return written


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_pages(args: argparse.Namespace, token: CancelToken) -> int:
    pages = await list_pages(args.document, args.token, cancel_token=token)
    step(f"{len(pages)} page(s)")
    for page in pages:
        print(f"  {page['id']:<12} {page['name']}")
    return 0


async def cmd_frames(args: argparse.Namespace, token: CancelToken) -> int:
    frames = await list_frames(args.document, args.token, args.page, cancel_token=token)
    step(f"{len(frames)} frame(s) on page {args.page}")
    for frame in frames:
        print(f"  {frame.id:<12} {frame.type:<10} {frame.name}")
    return 0


async def cmd_import(args: argparse.Namespace, token: CancelToken) -> int:
    step(f"Importing page {args.page}")
    items = await import_page(
        args.document, args.token, args.page,
        on_progress=progress, cancel_token=token, node_ids=args.node,
    )
    written = write_items(items, Path(args.output_dir))
    step(f"Wrote {len(written)} file(s) to {args.output_dir}")
    return 0


async def cmd_generate(args: argparse.Namespace, token: CancelToken) -> int:
    items: List[ContentItem] = load_content_items(args.files)
    if args.figma:
        step(f"Importing Figma page {args.page}")
        items.extend(await import_page(
            args.figma, args.token, args.page,
            on_progress=progress, cancel_token=token, node_ids=args.node,
        ))

    step(f"Generating test cases from {len(items)} item(s)")
    generator = TestCaseGenerator(GeminiModelClient())
    result = await generator.generate(
        items, style_note=args.style, cancel_token=token, on_progress=progress,
    )

    path = export_to_excel(result.test_cases, args.output)
    step(f"{len(result.test_cases)} test case(s) -> {path}")
    print(f"  Summary: {result.summary}")
    if result.questions:
        print("  Open questions:")
        for i, question in enumerate(result.questions, start=1):
            print(f"    Q{i}. {question}")
    return 0


COMMANDS = {
    "pages": cmd_pages,
    "frames": cmd_frames,
    "import": cmd_import,
    "generate": cmd_generate,
}


async def _run(coro_factory, args: argparse.Namespace) -> int:
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handler support
        pass
    try:
        return await coro_factory(args, token)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logger("design_qa")
    try:
        return asyncio.run(_run(COMMANDS[args.command], args))
    except OperationCancelled:
        print("\n  Cancelled.", file=sys.stderr)
        return 130
    except (FigmaClientError, FetchError, GenerationFailedError) as e:
        print(f"\n  ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
