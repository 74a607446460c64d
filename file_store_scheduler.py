# /file_store_scheduler.py
"""
File Store Scheduler (no UI)
- Periodically scans an entry folder for files matching glob patterns (e.g. "*.ts").
- Moves every match into a destination folder, keeping the relative subfolders.
- Processing is suspended during configured daily pause periods (may wrap midnight).
- Files held open by another process are retried a bounded number of times.
- Name collisions in the destination never overwrite: the new file gets a unique suffix.
- Styled console output:
  - MOVE green
  - MOVE_FAIL / errors red
  - SKIP orange
  - file paths white
- Log file is always plain (no color codes).

Configuration is read from AppConfig.json ("AppDefinition" section):

  {
    "AppDefinition": {
      "EntryDirectory": "D:/capture",
      "DestDirectory": "E:/store",
      "Patterns": ["*.ts"],
      "IntervalInSeconds": 60,
      "Recursive": true,
      "MoveRetryCount": 1,
      "MoveRetryDelayInMs": 1000,
      "PausePeriods": [{"Start": "22:00", "End": "06:00"}]
    }
  }

Usage
  pip install watchdog pathspec colorama
  python file_store_scheduler.py
  python file_store_scheduler.py --entry "/capture" --dest "/store" --interval 30
"""

from __future__ import annotations

import argparse
import datetime as dt
import enum
import errno
import json
import logging
import os
import shutil
import signal
import stat
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from colorama import just_fix_windows_console
from pathspec import PathSpec
from pathspec.patterns.gitignore.basic import GitIgnoreBasicPattern
from watchdog.utils.dirsnapshot import DirectorySnapshot

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None

DEFAULT_CONFIG_PATH = Path("AppConfig.json")
CONFIG_SECTION = "AppDefinition"

DEFAULT_PATTERNS = ("*.ts",)
DEFAULT_INTERVAL_SEC = 60.0
DEFAULT_MOVE_RETRY_COUNT = 1
DEFAULT_MOVE_RETRY_DELAY_MS = 1000

LOGGER_NAME = "file_store_scheduler"

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
LOCK_WINERRORS = {32, 33}
LOCK_ERRNOS = {errno.EAGAIN, errno.EWOULDBLOCK, errno.EBUSY, errno.ETXTBSY}


class ConfigError(ValueError):
    pass


class PatternError(ConfigError):
    pass


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "MOVE": Ansi.GREEN,
    "MOVE_FAIL": Ansi.RED,
    "SKIP": Ansi.ORANGE,
    "PAUSE": Ansi.LIGHT_BROWN,
    "BOOT": Ansi.LIGHT_BROWN,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action and action in base:
            color = ACTION_COLORS.get(action, "")
            base = base.replace(action, f"{color}{action}{Ansi.RESET}", 1)

        path_text = getattr(record, "path_text", None)
        if path_text and path_text in base:
            base = base.replace(path_text, f"{Ansi.WHITE}{path_text}{Ansi.RESET}")

        return base


def _today_log_name(prefix: str = "scheduler") -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def setup_logger(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        return logger

    just_fix_windows_console()

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))
    logger.addHandler(ch)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        fh.setLevel(level)
        logger.addHandler(fh)
        logger.info("Logging to: %s", log_path)

    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    level: int = logging.INFO,
    exc_info: Any = None,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
    logger.log(level, f"{action} | {message}", extra=extra, exc_info=exc_info)


# -------------------------
# Pattern matching
# -------------------------

def _escape_glob(pattern: str) -> str:
    # Only "*" stays a wildcard; everything else is literal.
    escaped = "*".join(GitIgnoreBasicPattern.escape(part) for part in pattern.split("*"))
    stripped = escaped.rstrip(" ")
    # gitignore drops unescaped trailing spaces
    return stripped + "\\ " * (len(escaped) - len(stripped))


class PatternMatcher:
    """
    Case-insensitive glob matching against a file's base name.

    "*" matches zero or more characters; every other character is literal.
    A name matches when it matches any of the patterns.
    """

    def __init__(self, patterns: Sequence[str], spec: PathSpec):
        self.patterns = tuple(patterns)
        self._spec = spec

    @classmethod
    def compile(cls, patterns: Iterable[str]) -> "PatternMatcher":
        patterns = list(patterns)
        lines = []
        for p in patterns:
            if not isinstance(p, str) or not p.strip():
                raise PatternError(f"Empty file pattern: {p!r}")
            if "/" in p or os.sep in p:
                raise PatternError(f"File pattern must not contain a path separator: {p!r}")
            lines.append(_escape_glob(p.casefold()))
        try:
            spec = PathSpec.from_lines("gitignore", lines)
        except ValueError as e:
            raise PatternError(f"Invalid file pattern in {patterns!r}: {e}") from e
        return cls(patterns, spec)

    def matches(self, file_name: str) -> bool:
        return self._spec.match_file(file_name.casefold())


def compile_patterns(patterns: Iterable[str]) -> PatternMatcher:
    return PatternMatcher.compile(patterns)


# -------------------------
# Pause windows
# -------------------------

def parse_time_of_day(text: str) -> dt.time:
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return dt.datetime.strptime(text.strip(), fmt).time()
        except ValueError:
            continue
    raise ConfigError(f"Invalid time of day (expected HH:MM): {text!r}")


@dataclass(frozen=True)
class PauseWindow:
    start: dt.time
    end: dt.time

    @classmethod
    def parse(cls, start: str, end: str) -> "PauseWindow":
        return cls(parse_time_of_day(start), parse_time_of_day(end))

    def contains(self, now: dt.time) -> bool:
        if self.start <= self.end:
            return self.start <= now <= self.end
        # spans midnight
        return now >= self.start or now <= self.end

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')} - {self.end.strftime('%H:%M')}"


def is_paused(now: dt.time, windows: Optional[Iterable[PauseWindow]]) -> bool:
    if not windows:
        return False
    return any(w.contains(now) for w in windows)


# -------------------------
# Moving files
# -------------------------

class FailureReason(enum.Enum):
    TRANSIENT_LOCK = "transient-lock"
    PERMISSION_DENIED = "permission-denied"
    OTHER = "other"


@dataclass(frozen=True)
class MoveOutcome:
    source: Path
    destination: Path
    attempts: int
    reason: Optional[FailureReason] = None
    error: Optional[BaseException] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.reason is None


def classify_move_error(exc: BaseException) -> FailureReason:
    if getattr(exc, "winerror", None) in LOCK_WINERRORS:
        return FailureReason.TRANSIENT_LOCK
    if isinstance(exc, PermissionError):
        return FailureReason.PERMISSION_DENIED
    if isinstance(exc, OSError) and exc.errno in LOCK_ERRNOS:
        return FailureReason.TRANSIENT_LOCK
    return FailureReason.OTHER


def unique_dest_for(dest: Path) -> Path:
    return dest.with_name(f"{dest.name}.{uuid.uuid4().hex}")


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def probe_exclusive(path: Path) -> None:
    """
    Raise if another process currently holds the file.

    Windows reports a sharing violation on open; on POSIX an exclusive
    advisory lock is tried as well. Both are released before returning.
    """
    with path.open("rb") as f:
        if fcntl is not None:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def move_file(src: Path, dest: Path) -> None:
    try:
        src.rename(dest)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    # cross-device: copy next to the target, then swap it in
    partial = dest.with_name(f".{dest.name}.{uuid.uuid4().hex}.partial")
    try:
        shutil.copy2(src, partial)
        os.replace(partial, dest)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    try:
        src.unlink()
    except BaseException:
        # the source is still there, so the copy must not survive
        dest.unlink(missing_ok=True)
        raise


class FileMover:
    def __init__(
        self,
        logger: logging.Logger,
        max_attempts: int = DEFAULT_MOVE_RETRY_COUNT,
        retry_delay_sec: float = DEFAULT_MOVE_RETRY_DELAY_MS / 1000.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.logger = logger
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_sec = max(0.0, float(retry_delay_sec))
        self.stop_event = stop_event or threading.Event()

    def move(self, src: Path, dest: Path) -> MoveOutcome:
        ensure_parent(dest)
        attempted = dest
        attempt = 0
        last_error: Optional[BaseException] = None

        while attempt < self.max_attempts:
            if self.stop_event.is_set():
                return self._cancelled(src, attempted, attempt, last_error)
            attempt += 1

            try:
                if attempted.exists():
                    attempted = unique_dest_for(dest)

                probe_exclusive(src)
                move_file(src, attempted)
                return MoveOutcome(src, attempted, attempt)
            except Exception as e:
                last_error = e
                reason = classify_move_error(e)

            if reason is not FailureReason.TRANSIENT_LOCK:
                self.logger.debug("%s: %s -> %s on attempt %d: %s", reason.value, src, attempted, attempt, last_error)
                return MoveOutcome(src, attempted, attempt, reason, last_error)

            self.logger.debug("File locked %s -> %s on attempt %d: %s", src, attempted, attempt, last_error)
            if attempt < self.max_attempts and self.stop_event.wait(self.retry_delay_sec):
                return self._cancelled(src, attempted, attempt, last_error)

        return MoveOutcome(src, attempted, attempt, FailureReason.TRANSIENT_LOCK, last_error)

    @staticmethod
    def _cancelled(src: Path, attempted: Path, attempt: int, last_error: Optional[BaseException]) -> MoveOutcome:
        reason = classify_move_error(last_error) if last_error is not None else FailureReason.OTHER
        return MoveOutcome(src, attempted, attempt, reason, last_error, cancelled=True)


# -------------------------
# Scan cycle
# -------------------------

@dataclass(frozen=True)
class DiscoveredFile:
    source: Path
    relative: Path
    destination: Path


@dataclass
class CycleReport:
    outcomes: list[MoveOutcome] = field(default_factory=list)
    entry_missing: bool = False
    aborted: bool = False
    cancelled: bool = False

    @property
    def moved(self) -> list[MoveOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[MoveOutcome]:
        return [o for o in self.outcomes if not o.succeeded and not o.cancelled]


def discover_files(
    entry_root: Path,
    dest_root: Path,
    recursive: bool,
    matcher: PatternMatcher,
) -> list[DiscoveredFile]:
    # lstat: symlinked folders are not descended into, symlinked files are not regular files
    snapshot = DirectorySnapshot(str(entry_root), recursive=recursive, stat=os.lstat)

    found = []
    for p in snapshot.paths:
        if not stat.S_ISREG(snapshot.stat_info(p).st_mode):
            continue
        src = Path(p)
        if not matcher.matches(src.name):
            continue
        rel = src.relative_to(entry_root)
        found.append(DiscoveredFile(source=src, relative=rel, destination=dest_root / rel))

    found.sort(key=lambda f: str(f.source))
    return found


def run_scan_cycle(
    entry_root: Path,
    dest_root: Path,
    recursive: bool,
    matcher: PatternMatcher,
    mover: FileMover,
    logger: logging.Logger,
    stop_event: Optional[threading.Event] = None,
) -> CycleReport:
    stop_event = stop_event or mover.stop_event
    report = CycleReport()

    entry_root = entry_root.expanduser().absolute()
    dest_root = dest_root.expanduser().absolute()

    if not entry_root.is_dir():
        log_action(logger, "SKIP", f"entry directory does not exist: {entry_root}", path=entry_root, level=logging.WARNING)
        report.entry_missing = True
        return report

    dest_root.mkdir(parents=True, exist_ok=True)

    try:
        found = discover_files(entry_root, dest_root, recursive, matcher)
    except OSError as e:
        log_action(logger, "SKIP", f"error enumerating {entry_root} | {e}", path=entry_root, level=logging.ERROR, exc_info=e)
        report.aborted = True
        return report

    for item in found:
        if stop_event.is_set():
            report.cancelled = True
            break

        try:
            ensure_parent(item.destination)
            outcome = mover.move(item.source, item.destination)
        except Exception as e:
            outcome = MoveOutcome(item.source, item.destination, 0, FailureReason.OTHER, e)

        report.outcomes.append(outcome)
        if outcome.succeeded:
            log_action(logger, "MOVE", f"{item.source} -> {outcome.destination}", path=outcome.destination)
        elif outcome.cancelled:
            log_action(
                logger,
                "SKIP",
                f"move cancelled {item.source} -> {outcome.destination} after {outcome.attempts} attempt(s)",
                path=item.source,
            )
            report.cancelled = True
            break
        else:
            unexpected = outcome.reason is FailureReason.OTHER
            log_action(
                logger,
                "MOVE_FAIL",
                f"{item.source} -> {outcome.destination} failed after {outcome.attempts} attempt(s) "
                f"({outcome.reason.value}) | {outcome.error}",
                path=item.source,
                level=logging.ERROR if unexpected else logging.WARNING,
                exc_info=outcome.error if unexpected else None,
            )

    return report


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class SchedulerConfig:
    entry_dir: str = ""
    dest_dir: str = ""
    patterns: tuple[str, ...] = DEFAULT_PATTERNS
    interval_sec: float = DEFAULT_INTERVAL_SEC
    recursive: bool = True
    move_retry_count: int = DEFAULT_MOVE_RETRY_COUNT
    move_retry_delay_ms: int = DEFAULT_MOVE_RETRY_DELAY_MS
    pause_windows: tuple[PauseWindow, ...] = ()

    def __post_init__(self):
        if self.interval_sec <= 0:
            raise ConfigError(f"IntervalInSeconds must be positive: {self.interval_sec}")
        if self.move_retry_count < 1:
            raise ConfigError(f"MoveRetryCount must be at least 1: {self.move_retry_count}")
        if self.move_retry_delay_ms < 0:
            raise ConfigError(f"MoveRetryDelayInMs must not be negative: {self.move_retry_delay_ms}")


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Move files matching patterns from an entry folder into a store folder.")
    p.add_argument("--config", type=str, default=None, help=f"JSON config file (default: {DEFAULT_CONFIG_PATH}).")
    p.add_argument("--entry", type=str, default=None, help="Folder to scan (source).")
    p.add_argument("--dest", type=str, default=None, help="Folder to move files into (destination).")
    p.add_argument("--pattern", action="append", default=None, help="File pattern, e.g. *.ts (repeatable).")
    p.add_argument("--interval", type=float, default=None, help="Seconds between scans.")
    p.add_argument("--no-recursive", action="store_true", help="Only scan the top level of the entry folder.")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--log-level", type=str, default="INFO", help="DEBUG, INFO, WARNING or ERROR.")
    p.add_argument("--once", action="store_true", help="Run a single scan and exit.")
    return p.parse_args(argv)


def load_config_file(path: Path, required: bool = False) -> dict:
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    section = data.get(CONFIG_SECTION, {}) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ConfigError(f"'{CONFIG_SECTION}' section in {path} must be an object")
    return section


def _typed(section: dict, key: str, kind: type | tuple[type, ...], default):
    value = section.get(key, default)
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"{key} has invalid value: {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"{key} has invalid value: {value!r}")
    return value


def _parse_pause_periods(raw) -> tuple[PauseWindow, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"PausePeriods must be a list: {raw!r}")
    windows = []
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError(f"Pause period must be an object: {item!r}")
        windows.append(PauseWindow.parse(str(item.get("Start", "00:00")), str(item.get("End", "00:00"))))
    return tuple(windows)


def config_from_section(section: dict) -> SchedulerConfig:
    patterns = _typed(section, "Patterns", list, list(DEFAULT_PATTERNS))
    return SchedulerConfig(
        entry_dir=_typed(section, "EntryDirectory", str, ""),
        dest_dir=_typed(section, "DestDirectory", str, ""),
        patterns=tuple(str(p) for p in patterns),
        interval_sec=float(_typed(section, "IntervalInSeconds", (int, float), DEFAULT_INTERVAL_SEC)),
        recursive=_typed(section, "Recursive", bool, True),
        move_retry_count=_typed(section, "MoveRetryCount", int, DEFAULT_MOVE_RETRY_COUNT),
        move_retry_delay_ms=_typed(section, "MoveRetryDelayInMs", int, DEFAULT_MOVE_RETRY_DELAY_MS),
        pause_windows=_parse_pause_periods(section.get("PausePeriods")),
    )


def build_effective_config(args: argparse.Namespace) -> SchedulerConfig:
    path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    section = load_config_file(path, required=bool(args.config))
    cfg = config_from_section(section)

    overrides: dict[str, Any] = {}
    if args.entry:
        overrides["entry_dir"] = args.entry
    if args.dest:
        overrides["dest_dir"] = args.dest
    if args.pattern:
        overrides["patterns"] = tuple(args.pattern)
    if args.interval is not None:
        overrides["interval_sec"] = float(args.interval)
    if args.no_recursive:
        overrides["recursive"] = False

    if not overrides:
        return cfg
    return replace(cfg, **overrides)


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def check_directories(cfg: SchedulerConfig) -> Optional[str]:
    """Return a description of what is wrong with the configured roots, or None."""
    if not cfg.entry_dir.strip() or not cfg.dest_dir.strip():
        return "EntryDirectory or DestDirectory is not set"
    entry = Path(cfg.entry_dir).expanduser()
    dest = Path(cfg.dest_dir).expanduser()
    if entry.resolve() == dest.resolve():
        return "EntryDirectory and DestDirectory must be different"
    if cfg.recursive and _is_subpath(dest, entry):
        return "DestDirectory must NOT be inside EntryDirectory when scanning recursively"
    return None


# -------------------------
# Scheduler loop
# -------------------------

class LoopState(enum.Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    PAUSED = "paused"
    SCANNING = "scanning"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class SchedulerLoop(threading.Thread):
    def __init__(
        self,
        config: SchedulerConfig,
        logger: logging.Logger,
        stop_event: threading.Event,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ):
        super().__init__(daemon=True, name="scheduler-loop")
        self.config = config
        self.logger = logger
        self.stop_event = stop_event
        self.clock = clock
        # patterns are captured once; a bad pattern fails here, before the thread starts
        self.matcher = compile_patterns(config.patterns)
        self.mover = FileMover(
            logger,
            max_attempts=config.move_retry_count,
            retry_delay_sec=config.move_retry_delay_ms / 1000.0,
            stop_event=stop_event,
        )
        self.state = LoopState.IDLE
        self.startup_error: Optional[str] = None
        self.cycles = 0
        self.last_report: Optional[CycleReport] = None

    def log_startup(self) -> None:
        cfg = self.config
        pause = str(cfg.pause_windows[0]) if cfg.pause_windows else "none"
        log_action(
            self.logger,
            "BOOT",
            f"entry={cfg.entry_dir or '<unset>'} dest={cfg.dest_dir or '<unset>'} "
            f"patterns={','.join(cfg.patterns)} interval={cfg.interval_sec:g}s pause={pause}",
        )

    def validate(self) -> bool:
        self.startup_error = check_directories(self.config)
        if self.startup_error:
            self.logger.error("%s. Scheduler is stopping.", self.startup_error)
            self.state = LoopState.STOPPED
            return False
        return True

    def paused_now(self) -> bool:
        return is_paused(self.clock().time(), self.config.pause_windows)

    def run_once(self) -> CycleReport:
        report = run_scan_cycle(
            Path(self.config.entry_dir),
            Path(self.config.dest_dir),
            self.config.recursive,
            self.matcher,
            self.mover,
            self.logger,
            self.stop_event,
        )
        self.cycles += 1
        self.last_report = report
        return report

    def run(self) -> None:
        self.log_startup()
        if not self.validate():
            return

        self.logger.info("SCHEDULER: started (interval=%.1fs)", self.config.interval_sec)
        while not self.stop_event.is_set():
            self.state = LoopState.EVALUATING
            try:
                if self.paused_now():
                    self.state = LoopState.PAUSED
                    log_action(self.logger, "PAUSE", "in pause period, skipping this cycle", level=logging.DEBUG)
                else:
                    self.state = LoopState.SCANNING
                    self.run_once()
            except Exception as e:
                self.logger.error("Error during file processing: %s", e, exc_info=e)

            self.state = LoopState.SLEEPING
            if self.stop_event.wait(self.config.interval_sec):
                break

        self.state = LoopState.STOPPED
        self.logger.info("SCHEDULER: stopped")


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    level = logging.getLevelName(args.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger = setup_logger(Path(args.log_dir).expanduser() if args.log_dir else None, level)

    try:
        cfg = build_effective_config(args)
        stop_event = threading.Event()
        loop = SchedulerLoop(cfg, logger, stop_event)
    except ConfigError as e:
        logger.error("Config error: %s", e)
        return 2

    if args.once:
        loop.log_startup()
        if not loop.validate():
            return 2
        if loop.paused_now():
            log_action(logger, "PAUSE", "in pause period, nothing to do")
            return 0
        report = loop.run_once()
        return 1 if report.failed or report.aborted else 0

    def _request_stop(signum, frame):
        logger.info("Signal %s received", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)

    logger.info("Starting scheduler... (Ctrl+C to stop)")
    loop.start()

    try:
        while loop.is_alive():
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        stop_event.set()
        loop.join(timeout=10)
        logger.info("Stopped.")

    return 2 if loop.startup_error else 0


if __name__ == "__main__":
    raise SystemExit(main())
