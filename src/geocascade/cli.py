"""Typer CLI entrypoints for geocascade."""

from __future__ import annotations

import json
import sys
from typing import Optional

import typer

from geocascade.config import (
    ProjectConfigError,
    Settings,
    initialize_project_config,
    load_settings,
    project_config_exists,
    resolve_project_config_root,
)
from geocascade.kernel.types import NONE, Level, PlaceId, coerce_place_id, parse_level
from geocascade.runtime import Runtime
from geocascade.session import PlaceSelectionSession
from geocascade.ui.render import render_doctor_text, render_notice, render_selection

EXIT_OK = 0
EXIT_LOAD_FAILED = 1
EXIT_USAGE = 2
EXIT_TIMEOUT = 3

app = typer.Typer(
    no_args_is_help=True,
    help="国家/州/城市级联选择 (Cascading country/state/city selection)",
)


def _missing_config_message() -> str:
    return render_notice(
        "error",
        "当前目录缺少项目配置目录：{0}，请先执行 `geocascade init`。".format(
            resolve_project_config_root()
        ),
        "Missing project config directory. Run `geocascade init` first.",
    )


def _require_project_config() -> None:
    if project_config_exists():
        return
    typer.echo(_missing_config_message(), err=True)
    raise typer.Exit(code=EXIT_USAGE)


def _build_runtime(settings: Settings) -> Runtime:
    return Runtime(settings)


def _load_runtime(context_id: Optional[str]) -> Runtime:
    _require_project_config()
    try:
        settings = load_settings(context_id=context_id)
    except ProjectConfigError as exc:
        typer.echo(render_notice("error", str(exc)), err=True)
        raise typer.Exit(code=EXIT_USAGE)
    return _build_runtime(settings)


def _open_session(runtime: Runtime) -> PlaceSelectionSession:
    state, error = runtime.load_saved_selection()
    if error:
        typer.echo(
            render_notice(
                "warn",
                "已保存的选择无法读取，将重新开始：{0}".format(error),
                "Saved selection is unreadable; starting fresh.",
            ),
            err=True,
        )
    return runtime.open_session(state=state)


def _settle(runtime: Runtime, session: PlaceSelectionSession, retries: int = 0) -> bool:
    """Wait for in-flight loads, then spend up to ``retries`` retry passes."""

    timeout = float(runtime.settings.load_timeout)
    settled = session.wait_for_loads(timeout)
    attempts = 0
    while settled and attempts < max(0, retries) and session.failed_levels():
        attempts += 1
        session.retry_requested.set(True)
        settled = session.wait_for_loads(timeout)
    return settled


def _finish(runtime: Runtime, session: PlaceSelectionSession, settled: bool, output_format: str) -> int:
    snapshot = session.snapshot()
    if output_format == "json":
        typer.echo(json.dumps(snapshot, ensure_ascii=False, indent=2))
    else:
        render_selection(snapshot, sys.stdout)
    runtime.save_selection(session)

    if not settled:
        typer.echo(
            render_notice("error", "加载超时。", "Timed out waiting for loads."),
            err=True,
        )
        return EXIT_TIMEOUT
    if session.failed_levels():
        return EXIT_LOAD_FAILED
    return EXIT_OK


def _normalize_format(output_format: str) -> str:
    normalized = str(output_format or "").strip().lower()
    if normalized not in {"json", "text"}:
        typer.echo(
            render_notice(
                "error",
                "不支持的格式：{0}".format(output_format),
                "Unsupported format: {0}".format(output_format),
            ),
            err=True,
        )
        raise typer.Exit(code=EXIT_USAGE)
    return normalized


def _parse_selection_id(raw: str, id_type: str) -> PlaceId:
    text = str(raw or "").strip()
    if text.lower() in {"none", "-", ""} or text == str(NONE):
        return NONE
    return coerce_place_id(text, id_type)


@app.command("init")
def init_cmd(
    force: bool = typer.Option(
        False,
        "--force",
        help="重建 .geocascade_config（会先删除已有目录） (Recreate config directory)",
    ),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="目录服务地址 (Catalog service URL)"),
) -> None:
    try:
        config_root = initialize_project_config(force=force, base_url=base_url)
    except ProjectConfigError as exc:
        typer.echo(render_notice("error", str(exc)), err=True)
        raise typer.Exit(code=EXIT_USAGE)

    typer.echo(
        render_notice(
            "success",
            "项目配置初始化完成：{0}".format(config_root),
            "Initialized project config at: {0}".format(config_root),
        )
    )


@app.command("show")
def show_cmd(
    retry: int = typer.Option(0, "--retry", min=0, help="失败后重试次数 (Retry passes for failed levels)"),
    output_format: str = typer.Option("text", "--format", help="输出格式：text|json (Output format)"),
    context_id: Optional[str] = typer.Option(None, "--context", help="上下文 ID (Context ID)"),
) -> None:
    """显示当前选择 (Show the current selection)."""
    normalized_format = _normalize_format(output_format)
    runtime = _load_runtime(context_id)
    try:
        with _open_session(runtime) as session:
            settled = _settle(runtime, session, retries=retry)
            exit_code = _finish(runtime, session, settled, normalized_format)
    finally:
        runtime.close()
    raise typer.Exit(code=exit_code)


@app.command("select")
def select_cmd(
    level_name: str = typer.Argument(..., metavar="LEVEL", help="country|state|city"),
    raw_id: str = typer.Argument(..., metavar="ID", help="选择的 ID，none 表示清空 (Place id, or none)"),
    retry: int = typer.Option(0, "--retry", min=0, help="失败后重试次数 (Retry passes for failed levels)"),
    output_format: str = typer.Option("text", "--format", help="输出格式：text|json (Output format)"),
    context_id: Optional[str] = typer.Option(None, "--context", help="上下文 ID (Context ID)"),
) -> None:
    """修改某一级的选择，并级联刷新下级 (Change one level and reload below it)."""
    normalized_format = _normalize_format(output_format)
    try:
        level = parse_level(level_name)
    except ValueError:
        typer.echo(
            render_notice("error", "未知层级：{0}".format(level_name), "Unknown level, use country|state|city."),
            err=True,
        )
        raise typer.Exit(code=EXIT_USAGE)

    runtime = _load_runtime(context_id)
    try:
        try:
            place_id = _parse_selection_id(raw_id, runtime.settings.remote_id_type)
        except ValueError:
            typer.echo(render_notice("error", "无效的 ID：{0}".format(raw_id), "Invalid id."), err=True)
            raise typer.Exit(code=EXIT_USAGE)

        with _open_session(runtime) as session:
            settled = _settle(runtime, session)
            if settled:
                _warn_if_unknown(session, level, place_id)
                session.select(level, place_id)
                settled = _settle(runtime, session, retries=retry)
            exit_code = _finish(runtime, session, settled, normalized_format)
    finally:
        runtime.close()
    raise typer.Exit(code=exit_code)


def _warn_if_unknown(session: PlaceSelectionSession, level: Level, place_id: PlaceId) -> None:
    if place_id == NONE:
        return
    items = session.choice(level).items.get()
    if not items or any(item.id == place_id for item in items):
        return
    typer.echo(
        render_notice(
            "warn",
            "ID {0} 不在当前{1}列表中。".format(place_id, level.value),
            "Id is not in the loaded {0} list.".format(level.value),
        ),
        err=True,
    )


@app.command("browse")
def browse_cmd(
    context_id: Optional[str] = typer.Option(None, "--context", help="上下文 ID (Context ID)"),
) -> None:
    """交互式逐级选择 (Interactive selection loop)."""
    runtime = _load_runtime(context_id)
    exit_code = EXIT_OK
    try:
        with _open_session(runtime) as session:
            settled = _settle(runtime, session)
            while True:
                render_selection(session.snapshot(), sys.stdout)
                if not settled:
                    typer.echo(render_notice("warn", "仍有加载未完成。", "Some loads are still running."))
                command = typer.prompt(
                    "<level> <id> | r 重试 (retry) | q 退出 (quit)",
                    default="q",
                ).strip()
                if command.lower() in {"q", "quit", "exit"}:
                    break
                if command.lower() in {"r", "retry"}:
                    session.retry_requested.set(True)
                    settled = _settle(runtime, session)
                    continue
                parts = command.split()
                if len(parts) != 2:
                    typer.echo(render_notice("warn", "格式：<level> <id>", "Usage: <level> <id>"))
                    continue
                try:
                    level = parse_level(parts[0])
                    place_id = _parse_selection_id(parts[1], runtime.settings.remote_id_type)
                except ValueError as exc:
                    typer.echo(render_notice("warn", str(exc)))
                    continue
                _warn_if_unknown(session, level, place_id)
                session.select(level, place_id)
                settled = _settle(runtime, session)
            runtime.save_selection(session)
            if session.failed_levels():
                exit_code = EXIT_LOAD_FAILED
    finally:
        runtime.close()
    raise typer.Exit(code=exit_code)


@app.command("doctor")
def doctor_cmd(
    output_format: str = typer.Option("json", "--format", help="输出格式：json|text (Output format)"),
    context_id: Optional[str] = typer.Option(None, "--context", help="上下文 ID (Context ID)"),
) -> None:
    normalized_format = _normalize_format(output_format)
    runtime = _load_runtime(context_id)
    try:
        report = runtime.doctor()
        if normalized_format == "json":
            typer.echo(json.dumps(report, ensure_ascii=True, indent=2))
            return
        typer.echo(render_doctor_text(report))
    finally:
        runtime.close()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
