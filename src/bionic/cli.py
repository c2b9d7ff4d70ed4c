from __future__ import annotations

import argparse
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .config import ReaderConfig
from .errors import InvalidPackage, describe_package_error
from .export import export_filename, write_export
from .logging_utils import configure_logging
from .navigator import ChapterNavigator, render_plain_chapter
from .package import PackageSession, open_package_file
from .text import convert_to_bionic
from .web import WebConfig, create_app

EXIT_INVALID_PACKAGE = 2
EXIT_EMPTY_BOOK = 3


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - installed without a source tree
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("bionic-reader")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"bionic {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )


def _add_reader_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--min-chars",
        type=int,
        default=ReaderConfig().min_chapter_chars,
        help="Skip chapters whose text is not longer than this (default: %(default)s).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bionic",
        description=(
            "Bionic reading for text and EPUB books. "
            "Commands: text, chapters, show, export, web."
        ),
    )
    _add_common_flags(ap)
    return ap


def build_text_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bionic text", description="Convert plain text to bionic markup.")
    _add_common_flags(ap)
    ap.add_argument("text", nargs="?", help="Text to convert (default: read --input or stdin).")
    ap.add_argument("-i", "--input", help="Read text from this file instead.")
    return ap


def build_chapters_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bionic chapters", description="List the readable chapters of an EPUB.")
    _add_common_flags(ap)
    _add_reader_flags(ap)
    ap.add_argument("epub", help="Path to input .epub")
    return ap


def build_show_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bionic show", description="Print bionic markup for one chapter.")
    _add_common_flags(ap)
    _add_reader_flags(ap)
    ap.add_argument("epub", help="Path to input .epub")
    ap.add_argument(
        "-c",
        "--chapter",
        type=int,
        default=1,
        help="Chapter number, 1-based (default: 1).",
    )
    ap.add_argument(
        "--plain",
        action="store_true",
        help="Render the whitespace-normalized text instead of the chapter markup.",
    )
    return ap


def build_export_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bionic export", description="Write a bionic copy of an EPUB.")
    _add_common_flags(ap)
    _add_reader_flags(ap)
    ap.add_argument("epub", help="Path to input .epub")
    ap.add_argument(
        "-o",
        "--output",
        help="Output path (default: <title>_bionic.epub next to the input).",
    )
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bionic web", description="Serve the browser-based bionic reader.")
    _add_common_flags(ap)
    _add_reader_flags(ap)
    ap.add_argument("epub", nargs="?", help="Optional .epub to open on start.")
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    ap.add_argument(
        "--memoize",
        action="store_true",
        help="Cache rendered chapters for the lifetime of the open book.",
    )
    return ap


def _reader_config(args: argparse.Namespace) -> ReaderConfig:
    return ReaderConfig(
        min_chapter_chars=args.min_chars,
        memoize=bool(getattr(args, "memoize", False)),
    )


def _open_book(args: argparse.Namespace) -> PackageSession:
    path = Path(args.epub).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Input EPUB not found: {path}")
    return open_package_file(path, _reader_config(args))


def _run_text(args: argparse.Namespace) -> int:
    if args.text is not None:
        text = args.text
    elif args.input:
        text = Path(args.input).read_text(encoding="utf-8")
    else:
        text = sys.stdin.read()
    sys.stdout.write(convert_to_bionic(text))
    sys.stdout.write("\n")
    return 0


def _run_chapters(args: argparse.Namespace) -> int:
    with _open_book(args) as session:
        table = Table(title=session.title)
        table.add_column("#", justify="right")
        table.add_column("Spine", justify="right")
        table.add_column("Title")
        table.add_column("Chars", justify="right")
        table.add_column("Source")
        for position, chapter in enumerate(session.chapters, start=1):
            table.add_row(
                str(position),
                str(chapter.index + 1),
                chapter.title,
                str(len(chapter.plain_text)),
                chapter.source,
            )
        Console().print(table)
    return 0


def _run_show(args: argparse.Namespace) -> int:
    with _open_book(args) as session:
        navigator = ChapterNavigator(session)
        if not navigator.jump_to(args.chapter - 1):
            raise ValueError(f"Chapter {args.chapter} out of range (1-{len(navigator)}).")
        if args.plain:
            markup = render_plain_chapter(navigator.current_chapter)
        else:
            markup = navigator.current_markup
    sys.stdout.write(markup)
    sys.stdout.write("\n")
    return 0


def _run_export(args: argparse.Namespace) -> int:
    inp_path = Path(args.epub).expanduser()
    with _open_book(args) as session:
        if args.output:
            output = Path(args.output).expanduser()
            target = write_export(session, output.parent, filename=output.name)
        else:
            target = write_export(session, inp_path.parent, filename=export_filename(session.title))
    Console(stderr=True).print(f"Wrote {target}")
    return 0


def _run_web(args: argparse.Namespace) -> int:
    epub = Path(args.epub).expanduser().resolve() if args.epub else None
    app = create_app(WebConfig(epub=epub, reader=_reader_config(args)))
    url = f"http://{_resolve_local_ip(args.host)}:{args.port}/"
    print(f"Serving bionic reader{f' for {epub.name}' if epub else ''}")
    print(f"Web URL: {url}")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


_COMMANDS = {
    "text": (build_text_parser, _run_text),
    "chapters": (build_chapters_parser, _run_chapters),
    "show": (build_show_parser, _run_show),
    "export": (build_export_parser, _run_export),
    "web": (build_web_parser, _run_web),
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] not in _COMMANDS:
        parser = build_parser()
        if not argv:
            parser.print_help()
            return 0
        parser.parse_args(argv)
        parser.error(f"unknown command: {argv[0]}")

    build, run = _COMMANDS[argv[0]]
    args = build().parse_args(argv[1:])
    configure_logging(debug=args.debug)
    try:
        return run(args)
    except InvalidPackage as exc:
        Console(stderr=True).print(describe_package_error(exc), markup=False)
        return EXIT_EMPTY_BOOK if exc.is_empty else EXIT_INVALID_PACKAGE
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


if __name__ == "__main__":
    raise SystemExit(main())
