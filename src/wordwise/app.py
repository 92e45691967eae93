"""Application bootstrap helpers for the Wordwise desktop editor."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, cast, get_args, get_origin, get_type_hints

from .ai.client import AnalyzerClient, ClientSettings
from .editor.session import EditorSession
from .services.persistence import JsonSuggestionStore
from .services.settings import ReconcilerSettings, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
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
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def create_qapp() -> QtRuntime:
    """Create a qasync-powered QApplication instance."""

    try:  # Local import keeps --dump-settings usable without a display stack.
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise RuntimeError("PySide6 must be installed to launch the Wordwise UI.") from exc

    try:
        from qasync import QEventLoop
    except ImportError as exc:  # pragma: no cover - depends on env setup
        raise RuntimeError("qasync is required to run the async Qt event loop.") from exc

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    app.setApplicationName("Wordwise")
    app.setApplicationDisplayName("Wordwise")

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)

    return QtRuntime(app=app, loop=loop)


def build_analyzer(settings: Settings, *, debug_logging: bool = False) -> AnalyzerClient | None:
    """Construct the analyzer client, or ``None`` when no API key is configured."""

    if not settings.api_key:
        _LOGGER.warning("No API key configured; analysis is disabled.")
        return None
    client_settings = ClientSettings.from_settings(settings)
    client_settings.debug_logging = debug_logging or settings.debug_logging
    return AnalyzerClient(client_settings)


def build_session(
    settings: Settings,
    *,
    document: Path | None = None,
    store: JsonSuggestionStore | None = None,
    analyzer: AnalyzerClient | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> EditorSession:
    """Create an editor session for ``document`` (or an empty scratch buffer).

    A buffer snapshot saved after the file was last modified wins over the
    file contents, so accepted edits survive a restart.
    """

    text = ""
    document_id = None
    if document is not None:
        document_id = str(document.expanduser().resolve())
        modified_at = None
        if document.exists():
            text = document.read_text(encoding="utf-8")
            modified_at = datetime.fromtimestamp(document.stat().st_mtime, tz=timezone.utc)
        else:
            _LOGGER.info("Document %s does not exist yet; starting empty.", document)
        if store is not None:
            snapshot = store.load_buffer(document_id, newer_than=modified_at)
            if snapshot is not None:
                _LOGGER.info("Restoring saved buffer for %s", document)
                text = snapshot
    return EditorSession(
        document_id,
        text,
        persistence=store,
        analyzer=analyzer,
        settings=settings,
        loop=loop,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `wordwise` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)
    debug = _env_flag("WORDWISE_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("WORDWISE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    suggestion_store = JsonSuggestionStore(args.store_path)
    if args.cleanup_store:
        stats = suggestion_store.cleanup(max_pending_age_days=args.max_pending_age_days)
        json.dump(asdict(stats), sys.stdout, indent=2)
        sys.stdout.write("\n")
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    runtime = create_qapp()
    loop = runtime.loop
    analyzer = build_analyzer(settings, debug_logging=debug)
    document = Path(args.document) if args.document else None
    session = build_session(
        settings, document=document, store=suggestion_store, analyzer=analyzer, loop=loop
    )

    from .editor.editor_widget import SuggestionEditorWidget

    widget = SuggestionEditorWidget(session)
    widget.setWindowTitle(f"Wordwise - {document.name}" if document else "Wordwise")
    widget.resize(900, 640)
    widget.show()
    loop.create_task(session.restore_suggestions())

    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(_shutdown(session, analyzer))
        _drain_event_loop(loop)
        loop.close()


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


async def _shutdown(session: EditorSession, analyzer: AnalyzerClient | None) -> None:
    await session.aclose()
    if analyzer is None:
        return
    try:
        await analyzer.aclose()
    except Exception as exc:  # pragma: no cover - network teardown
        _LOGGER.debug("Analyzer shutdown failed: %s", exc)


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks(loop) if not task.done() and task is not current_task]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_asyncgens()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover - loop already stopping
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


# ------------------------------------------------------------------
# CLI parsing
# ------------------------------------------------------------------


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="wordwise",
        add_help=True,
        description="Launch the Wordwise editor or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.wordwise/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable; use reconciler.<field> for engine knobs).",
    )
    parser.add_argument("--document", metavar="PATH", help="Open this text file on launch.")
    parser.add_argument(
        "--store-path",
        metavar="PATH",
        help="Directory for persisted suggestions (default ~/.wordwise/documents).",
    )
    parser.add_argument(
        "--cleanup-store",
        action="store_true",
        help="Remove duplicate and expired suggestions from the store and exit.",
    )
    parser.add_argument(
        "--max-pending-age-days",
        type=int,
        default=30,
        help="Pending suggestions older than this are removed by --cleanup-store.",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "wordwise"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    settings_hints = get_type_hints(Settings)
    reconciler_hints = get_type_hints(ReconcilerSettings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key.startswith("reconciler."):
            annotation = reconciler_hints.get(key.split(".", 1)[1])
        elif key == "reconciler":
            raise ValueError("Use reconciler.<field>=VALUE to override engine settings.")
        else:
            annotation = settings_hints.get(key)
        if annotation is None:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()
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
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key"))
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("WORDWISE_"))


if __name__ == "__main__":  # pragma: no cover
    main()
