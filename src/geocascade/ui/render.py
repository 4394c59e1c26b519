"""Presentation helpers for geocascade CLI output."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, TextIO

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from geocascade.kernel.types import NONE

_LEVEL_TITLES = {
    "country": ("国家", "Country"),
    "state": ("州/省", "State"),
    "city": ("城市", "City"),
}

_STATE_STYLES = {
    "idle": "dim",
    "loading": "yellow",
    "ok": "green",
    "empty": "cyan",
    "error": "bold red",
}

MAX_ITEMS_SHOWN = 20


def bilingual_text(zh: str, en: Optional[str] = None) -> str:
    if not en:
        return zh
    return "{0} ({1})".format(zh, en)


def render_notice(level: str, zh: str, en: Optional[str] = None) -> str:
    prefix_map = {
        "info": bilingual_text("提示", "Info"),
        "warn": bilingual_text("警告", "Warning"),
        "error": bilingual_text("错误", "Error"),
        "success": bilingual_text("成功", "Success"),
    }
    prefix = prefix_map.get(level, bilingual_text("提示", "Info"))
    return "{0}: {1}".format(prefix, bilingual_text(zh, en))


def _is_tty(stream: TextIO, forced: Optional[bool]) -> bool:
    if forced is not None:
        return forced
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except Exception:
            return False
    return False


def _level_title(level: str) -> str:
    zh, en = _LEVEL_TITLES.get(level, (level, level))
    return bilingual_text(zh, en)


def _selection_label(info: Dict[str, Any]) -> str:
    selected_id = info.get("selected_id")
    name = info.get("selected_name")
    if selected_id == NONE:
        return "-"
    if name:
        return "{0} [{1}]".format(name, selected_id)
    return "[{0}]".format(selected_id)


def selection_lines(snapshot: Dict[str, Any]) -> Iterable[str]:
    for level, info in snapshot.get("levels", {}).items():
        items: List[Dict[str, Any]] = list(info.get("items") or [])
        yield "{0}: state={1} selected={2} items={3}".format(
            _level_title(level),
            info.get("state"),
            _selection_label(info),
            len(items),
        )
        for item in items[:MAX_ITEMS_SHOWN]:
            marker = "*" if item.get("id") == info.get("selected_id") else " "
            yield "  {0} {1}  {2}".format(marker, item.get("id"), item.get("name"))
        if len(items) > MAX_ITEMS_SHOWN:
            yield "  ... +{0}".format(len(items) - MAX_ITEMS_SHOWN)
    problem = snapshot.get("problem")
    if problem:
        yield render_notice("error", "加载失败：{0}".format(problem), "load failed")


def render_selection(
    snapshot: Dict[str, Any],
    stream: TextIO,
    is_tty: Optional[bool] = None,
) -> None:
    if not _is_tty(stream, is_tty):
        for line in selection_lines(snapshot):
            stream.write(line + "\n")
        stream.flush()
        return

    console = Console(file=stream, highlight=False, soft_wrap=True)
    for level, info in snapshot.get("levels", {}).items():
        state = str(info.get("state") or "")
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
        table.add_column("", width=1)
        table.add_column("id")
        table.add_column(bilingual_text("名称", "Name"))
        items = list(info.get("items") or [])
        for item in items[:MAX_ITEMS_SHOWN]:
            marker = "*" if item.get("id") == info.get("selected_id") else ""
            table.add_row(marker, escape(str(item.get("id"))), escape(str(item.get("name"))))
        if len(items) > MAX_ITEMS_SHOWN:
            table.add_row("", "...", "+{0}".format(len(items) - MAX_ITEMS_SHOWN))
        console.print(
            Panel(
                table,
                title=escape("{0} · {1}".format(_level_title(level), _selection_label(info))),
                subtitle="[{0}]{1}[/]".format(_STATE_STYLES.get(state, "white"), state),
                border_style="cyan",
                box=box.ROUNDED,
            )
        )
    problem = snapshot.get("problem")
    if problem:
        console.print(escape(render_notice("error", "加载失败：{0}".format(problem), "load failed")), style="red")


def render_doctor_text(report: Dict[str, Any]) -> str:
    lines = [bilingual_text("诊断报告", "Doctor Report")]
    for key in sorted(report.keys()):
        lines.append("{0}={1}".format(key, report[key]))
    return "\n".join(lines)
