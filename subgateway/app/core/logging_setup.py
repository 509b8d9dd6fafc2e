from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from ..utils.redact import redact_for_log, redact_log_text

LOG_FORMAT = "%(asctime)s %(levelname)s %(process)d %(name)s | %(message)s"
FALLBACK_LOG_DIR = Path("/tmp/subgate")

_configured = False
_hooks_installed = False
_active_paths: Dict[str, Path] = {}


class RedactingFormatter(logging.Formatter):
    """Masks cookies, passwords and subscription ids in the final record text."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_log_text(super().format(record))


def _env_bounded_int(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(float(os.getenv(name, "") or default))
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def _env_path(name: str, default: str) -> Path:
    return Path((os.getenv(name) or "").strip() or default)


def _log_targets() -> Dict[str, Path]:
    return {
        "gateway": _env_path("SUBGATE_LOG_FILE", "/var/log/subgate/gateway.log"),
        "crash": _env_path("SUBGATE_CRASH_LOG_FILE", "/var/log/subgate/crash.log"),
    }


def _writable(path: Path) -> Optional[Path]:
    for candidate in (path, FALLBACK_LOG_DIR / path.name):
        try:
            candidate.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        return candidate
    return None


def _attach_rotating(logger: logging.Logger, name: str, level: int, env_prefix: str) -> Optional[Path]:
    """Add a size-rotated file handler for ``name`` once; return the file actually used."""
    path = _writable(_log_targets()[name])
    if path is None:
        logger.warning("no writable directory for %s log", name)
        return None
    if any(getattr(h, "baseFilename", None) == str(path.absolute()) for h in logger.handlers):
        return path
    handler = RotatingFileHandler(
        str(path),
        maxBytes=_env_bounded_int(f"{env_prefix}_MAX_BYTES", 5 * 1024 * 1024, 128 * 1024, 512 * 1024 * 1024),
        backupCount=_env_bounded_int(f"{env_prefix}_BACKUP_COUNT", 5, 1, 50),
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(RedactingFormatter(LOG_FORMAT))
    logger.addHandler(handler)
    return path


def configure_runtime_logging() -> None:
    """Root logging to stdout plus ``gateway.log``, then the crash hooks. Idempotent."""
    global _configured
    if _configured:
        return
    level_name = (os.getenv("SUBGATE_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(RedactingFormatter(LOG_FORMAT))
        root.addHandler(stream)

    try:
        path = _attach_rotating(root, "gateway", level, "SUBGATE_LOG")
    except OSError:
        logging.getLogger(__name__).exception("failed to set up file logging")
        path = None
    if path is not None:
        _active_paths["gateway"] = path

    _configured = True
    install_crash_hooks()
    logging.getLogger(__name__).info("runtime logging enabled file=%s", path)


def install_crash_hooks() -> None:
    """Route uncaught exceptions from the main thread and worker threads to ``crash.log``."""
    global _hooks_installed
    if _hooks_installed:
        return
    crash = logging.getLogger("subgate.crash")
    try:
        path = _attach_rotating(crash, "crash", logging.ERROR, "SUBGATE_CRASH_LOG")
    except OSError:
        crash.exception("failed to set up crash file logging")
        path = None
    if path is not None:
        _active_paths["crash"] = path

    previous_sys = sys.excepthook
    previous_thread = threading.excepthook

    def on_uncaught(exc_type, exc, tb):
        if not issubclass(exc_type, KeyboardInterrupt):
            crash.critical("uncaught exception", exc_info=(exc_type, exc, tb))
        previous_sys(exc_type, exc, tb)

    def on_thread_uncaught(args: threading.ExceptHookArgs):
        name = args.thread.name if args.thread is not None else "?"
        crash.critical("uncaught exception in thread %s", name, exc_info=(args.exc_type, args.exc_value, args.exc_traceback))
        previous_thread(args)

    sys.excepthook = on_uncaught
    threading.excepthook = on_thread_uncaught
    _hooks_installed = True


def _summarize_context(context: Dict[str, Any], limit: int = 400) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key, value in context.items():
        if key == "exception":
            continue
        text = redact_log_text(repr(redact_for_log(value, key_hint=str(key))))
        out[str(key)] = text if len(text) <= limit else text[:limit] + "..."
    return out


def install_asyncio_exception_logging() -> None:
    """Log loop-level errors (e.g. a never-awaited task failure) before the default handler runs."""
    loop = asyncio.get_running_loop()
    log = logging.getLogger("subgate.asyncio")
    previous = loop.get_exception_handler()
    if getattr(previous, "_subgate", False):
        return

    def handler(lp: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        message = context.get("message") or "unhandled asyncio exception"
        log.error("%s context=%s", message, _summarize_context(context), exc_info=context.get("exception"))
        if previous is not None:
            previous(lp, context)
        else:
            lp.default_exception_handler(context)

    handler._subgate = True  # type: ignore[attr-defined]
    loop.set_exception_handler(handler)


def get_runtime_log_paths() -> Dict[str, Path]:
    targets = _log_targets()
    return {name: _active_paths.get(name, targets[name]) for name in targets}
