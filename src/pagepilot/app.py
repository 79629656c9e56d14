"""Command-line bootstrap for the PagePilot assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.orchestration.request_composer import history_entry_fields
from .context.host import StaticHostEnvironment
from .coordinator import PanelCoordinator
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `pagepilot` console script."""

    args = _parse_cli_args(argv)

    debug = args.debug or _env_flag("PAGEPILOT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("PAGEPILOT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if args.history is not None:
        return asyncio.run(list_history(settings, args.history))

    if not args.url or not args.prompt:
        print("A URL and a prompt are required (see --help).", file=sys.stderr)
        return 2

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    return asyncio.run(run_prompt(settings, args.url, " ".join(args.prompt)))


async def run_prompt(
    settings: Settings,
    url: str,
    prompt: str,
    *,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    coordinator: PanelCoordinator | None = None,
) -> int:
    """Ask ``prompt`` about ``url`` and stream the answer to ``stdout``."""

    out = stdout or sys.stdout
    err = stderr or sys.stderr
    active = coordinator or PanelCoordinator(settings, StaticHostEnvironment(url))

    def _write(fragment: str) -> None:
        out.write(fragment)
        out.flush()

    try:
        result = await active.send(prompt, on_delta=_write)
    finally:
        await active.aclose()
    if result.error:
        print(result.error, file=err)
        return 1
    out.write("\n")
    return 0


async def list_history(
    settings: Settings,
    limit: int | None = None,
    *,
    stdout: TextIO | None = None,
    coordinator: PanelCoordinator | None = None,
) -> int:
    """Print one line per page stored in the document store."""

    out = stdout or sys.stdout
    active = coordinator or PanelCoordinator(settings, StaticHostEnvironment())
    try:
        entries = await active.browse_history(limit)
    finally:
        await active.aclose()
    for entry in entries:
        title, url, updated = history_entry_fields(entry)
        line = f"{updated}  {title}" if updated else title
        out.write(f"{line}  {url}\n" if url else f"{line}\n")
    return 0


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pagepilot",
        description="Ask the browsing assistant a question about a web page.",
    )
    parser.add_argument("url", nargs="?", help="Address of the page to talk about.")
    parser.add_argument("prompt", nargs="*", help="Question to ask about the page.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings",
        dest="settings_path",
        metavar="PATH",
        help="Override the default ~/.pagepilot/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--history",
        nargs="?",
        type=int,
        const=20,
        default=None,
        metavar="N",
        help="List the N most recently stored pages (default 20) and exit.",
    )
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level and echo logs to stderr.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    log_path = logging_utils.get_log_path()
    payload = asdict(settings)
    for name in ("api_key", "document_store_api_key"):
        value = payload.get(name, "")
        if isinstance(value, str):
            payload[name] = redact_secret(value)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
        "log_file": str(log_path) if log_path else None,
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("PAGEPILOT_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
