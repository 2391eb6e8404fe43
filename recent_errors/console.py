from __future__ import annotations

import sys
from typing import Optional, TextIO

from rich.console import Console
from rich.markup import escape


LEVEL_STYLES = {
    "Error": "red",
    "Warning": "yellow",
}


def make_console(file: Optional[TextIO] = None) -> Console:
    # リダイレクト時の cp1252 等で表せない文字は ? に置き換え、例外で実行を止めない
    stream = file if file is not None else sys.stdout
    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(errors="replace")

    # highlight=False: keep IDs and timestamps in the colors we choose
    return Console(file=file, highlight=False, soft_wrap=True)


def banner(console: Console, text: str) -> None:
    console.print(f"[bold cyan]{'=' * 60}[/bold cyan]")
    console.print(f"[bold cyan]{escape(text)}[/bold cyan]")
    console.print(f"[bold cyan]{'=' * 60}[/bold cyan]")


def heading(console: Console, text: str) -> None:
    console.print(f"\n[cyan]{escape(text)}[/cyan]")


def info(console: Console, text: str) -> None:
    console.print(escape(text))


def ok(console: Console, text: str) -> None:
    console.print(f"[green]{escape(text)}[/green]")


def warn(console: Console, text: str) -> None:
    console.print(f"[yellow]WARNING: {escape(text)}[/yellow]")


def error(console: Console, text: str) -> None:
    console.print(f"[bold red]ERROR: {escape(text)}[/bold red]")


def level_line(console: Console, level: str, text: str) -> None:
    style = LEVEL_STYLES.get(level, "white")
    console.print(f"[{style}]{escape(text)}[/{style}]")
