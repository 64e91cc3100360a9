"""Filesystem and shell tools confined to a project root."""

import asyncio
import json
import logging
import os
import re
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .cancellation import CancelToken
from .environment import detect_shell
from .errors import (
    CommandTimeoutError,
    EditAmbiguousError,
    EditNotFoundError,
    FileTooLargeError,
    NotAFileError,
    PathEscapeError,
    RunCancelled,
    ToolValidationError,
)

logger = logging.getLogger("Project-Tools")

MAX_FILE_BYTES = 300_000
MAX_GLOB_RESULTS = 500
MAX_GREP_MATCHES = 200
MAX_GREP_LINE_LENGTH = 500
BINARY_SNIFF_BYTES = 8192

DEFAULT_COMMAND_TIMEOUT = 90.0
KILL_GRACE_SECONDS = 2.0
MAX_STDOUT_CHARS = 200_000
MAX_STDERR_CHARS = 80_000

HEAVY_DIRS = [
    "node_modules",
    ".git",
    ".next",
    ".nuxt",
    "dist",
    "build",
    ".output",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    "vendor",
    ".bundle",
    "coverage",
    ".cache",
    ".turbo",
    ".parcel-cache",
]
_SKIP_DIRS = set(HEAVY_DIRS)
RG_OPT_OUT = re.compile(r"(?:^|\s)(?:-g\S*|--glob\b|--no-ignore\b|-uuu\b)")


@dataclass
class GlobResult:
    matches: List[str] = field(default_factory = list)
    truncated: bool = False


@dataclass
class GrepMatch:
    file: str
    line: int
    content: str


@dataclass
class GrepResult:
    matches: List[GrepMatch] = field(default_factory = list)
    file_count: int = 0
    truncated: bool = False


def resolve_inside_project(project_root: Path, raw_path: str) -> Path:
    """
    Join a tool path against the project root and refuse anything outside it.

    Parameters:
        project_root: Project directory.
        raw_path: Path supplied by the model, relative or absolute.
    """
    root = Path(project_root).resolve()
    target = (root / (raw_path or ".")).resolve()
    if target != root and root not in target.parents:
        raise PathEscapeError(raw_path)
    return target


def list_files(project_root: Path, raw_path: str = ".") -> List[Dict[str, str]]:
    """Non-recursive listing of one directory, without `.git*` entries."""
    target = resolve_inside_project(project_root, raw_path)
    if not target.is_dir():
        raise NotAFileError(raw_path, "Target is not a directory")

    entries = []
    for entry in sorted(target.iterdir(), key = lambda item: item.name):
        if entry.name.startswith(".git"):
            continue
        entries.append({"name": entry.name, "type": "dir" if entry.is_dir() else "file"})
    return entries


def read_text_file(project_root: Path, raw_path: str) -> str:
    target = resolve_inside_project(project_root, raw_path)
    if not target.is_file():
        raise NotAFileError(raw_path)
    size = target.stat().st_size
    if size > MAX_FILE_BYTES:
        raise FileTooLargeError(size)
    return target.read_text(encoding = "utf-8", errors = "replace")


def write_text_file(project_root: Path, raw_path: str, content: str) -> Path:
    target = resolve_inside_project(project_root, raw_path)
    if target.is_dir():
        raise NotAFileError(raw_path)
    target.parent.mkdir(parents = True, exist_ok = True)
    target.write_text(content, encoding = "utf-8")
    return target


def edit_file(
    project_root: Path,
    raw_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> int:
    """
    Replace an exact substring and return the number of replacements.

    Parameters:
        project_root: Project directory.
        raw_path: File to edit.
        old_string: Text that must occur exactly once unless replace_all is set.
        new_string: Replacement text.
        replace_all: Replace every occurrence.
    """
    if old_string == new_string:
        raise ToolValidationError("old_string and new_string must be different", tool_name = "edit_file")
    if not old_string:
        raise ToolValidationError("old_string must not be empty", tool_name = "edit_file")

    target = resolve_inside_project(project_root, raw_path)
    if not target.is_file():
        raise NotAFileError(raw_path, "File not found")

    text = target.read_text(encoding = "utf-8", errors = "replace")
    count = text.count(old_string)
    if count == 0:
        raise EditNotFoundError()
    if count > 1 and not replace_all:
        raise EditAmbiguousError(count)

    if replace_all:
        updated = text.replace(old_string, new_string)
    else:
        updated = text.replace(old_string, new_string, 1)
    target.write_text(updated, encoding = "utf-8")
    return count


def glob_files(project_root: Path, pattern: str, raw_path: str = ".") -> GlobResult:
    """Files under `raw_path` whose relative path matches `pattern`."""
    base = resolve_inside_project(project_root, raw_path)
    matcher = compile_glob(pattern)
    result = GlobResult()

    for _, rel_path in _walk_files(base):
        if not matcher.fullmatch(rel_path):
            continue
        if len(result.matches) >= MAX_GLOB_RESULTS:
            result.truncated = True
            break
        result.matches.append(_display_path(raw_path, rel_path))
    return result


def grep_files(
    project_root: Path,
    pattern: str,
    include: str = "",
    raw_path: str = ".",
) -> GrepResult:
    """
    Regex line search over the walked tree.

    Parameters:
        project_root: Project directory.
        pattern: Python regular expression.
        include: Optional glob matched against the basename or the relative path.
        raw_path: Directory to search from.
    """
    base = resolve_inside_project(project_root, raw_path)
    try:
        regex = re.compile(pattern)
    except re.error as exc:
        raise ToolValidationError(f"Invalid regex pattern: {exc}", tool_name = "grep") from exc
    include_matcher = compile_glob(include) if include else None

    result = GrepResult()
    for full_path, rel_path in _walk_files(base):
        if include_matcher and not (
            include_matcher.fullmatch(full_path.name) or include_matcher.fullmatch(rel_path)
        ):
            continue

        lines = _read_searchable_lines(full_path)
        if lines is None:
            continue

        matched_here = False
        for number, line in enumerate(lines, start = 1):
            if not regex.search(line):
                continue
            if len(result.matches) >= MAX_GREP_MATCHES:
                result.truncated = True
                return result
            if not matched_here:
                matched_here = True
                result.file_count += 1
            if len(line) > MAX_GREP_LINE_LENGTH:
                line = line[:MAX_GREP_LINE_LENGTH] + "..."
            result.matches.append(GrepMatch(file = _display_path(raw_path, rel_path), line = number, content = line))
    return result


def compile_glob(pattern: str) -> "re.Pattern":
    """
    Translate a glob with `**`, `*`, `?`, `[...]` and `{a,b}` into a regex.

    `**/` matches zero or more directories and `*` never crosses a slash.
    """
    pattern = pattern.strip()
    if pattern.startswith("./"):
        pattern = pattern[2:]
    return re.compile(_glob_to_regex(pattern))


def _glob_to_regex(pattern: str) -> str:
    parts = []
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "*":
            if pattern.startswith("**", index):
                index += 2
                if index < length and pattern[index] == "/":
                    index += 1
                    parts.append("(?:.*/)?")
                else:
                    parts.append(".*")
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = pattern.find("]", index + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[index + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                index = end
        elif char == "{":
            end = pattern.find("}", index + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                options = pattern[index + 1:end].split(",")
                parts.append("(?:" + "|".join(_glob_to_regex(option) for option in options) + ")")
                index = end
        else:
            parts.append(re.escape(char))
        index += 1
    return "".join(parts)


def _walk_files(base: Path) -> Iterator[Tuple[Path, str]]:
    """Yield (absolute path, posix relative path) for files, skipping heavy and hidden entries."""
    for current, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(
            name for name in dirnames
            if name not in _SKIP_DIRS and not name.startswith(".")
        )
        current_path = Path(current)
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            full_path = current_path / name
            yield full_path, full_path.relative_to(base).as_posix()


def _read_searchable_lines(full_path: Path) -> Optional[List[str]]:
    """Text lines of a file, or None for oversized, unreadable or binary files."""
    try:
        if full_path.stat().st_size > MAX_FILE_BYTES:
            return None
        raw = full_path.read_bytes()
    except OSError:
        return None
    if b"\x00" in raw[:BINARY_SNIFF_BYTES]:
        return None
    return raw.decode("utf-8", errors = "replace").split("\n")


def _display_path(raw_path: str, rel_path: str) -> str:
    if not raw_path or raw_path in {".", "./"}:
        return rel_path
    return f"{raw_path.rstrip('/')}/{rel_path}"


def safe_command(command: str) -> str:
    """Add heavy-directory exclusions to recursive grep, rg and find invocations."""
    trimmed = command.strip()

    if re.match(r"^grep\b", trimmed) and re.search(r"\s-[A-Za-z]*r", trimmed):
        if "--exclude-dir" not in trimmed:
            excludes = " ".join(f"--exclude-dir={name}" for name in HEAVY_DIRS)
            return re.sub(r"^grep", lambda _: f"grep {excludes}", trimmed, count = 1)

    if re.match(r"^rg\b", trimmed):
        if not RG_OPT_OUT.search(trimmed):
            globs = " ".join(f"-g '!{name}'" for name in HEAVY_DIRS)
            return re.sub(r"^rg", lambda _: f"rg {globs}", trimmed, count = 1)

    if re.match(r"^find\b", trimmed):
        if "-prune" not in trimmed and "--exclude" not in trimmed:
            prunes = " ".join(f"-name {name} -prune -o" for name in HEAVY_DIRS)
            return re.sub(
                r"^(find\s+\S+)",
                lambda match: f"{match.group(1)} \\( {prunes} -true \\)",
                trimmed,
                count = 1,
            )

    return command


async def run_command(
    project_root: Path,
    command: str,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    cancel_token: Optional[CancelToken] = None,
    shell: Optional[str] = None,
    kill_grace: float = KILL_GRACE_SECONDS,
) -> Dict[str, object]:
    """
    Run a command through the host shell in the project root.

    Parameters:
        project_root: Working directory for the command.
        command: Command text, passed through safe_command first.
        timeout: Seconds before CommandTimeoutError.
        cancel_token: Run cancellation; observed while the command runs.
        shell: Shell executable, detected from the host when omitted.
        kill_grace: Seconds between terminate and kill.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    root = Path(project_root).resolve()
    shell = shell or detect_shell()
    posix = sys.platform != "win32"
    process = await asyncio.create_subprocess_shell(
        safe_command(command),
        cwd = str(root),
        stdout = asyncio.subprocess.PIPE,
        stderr = asyncio.subprocess.PIPE,
        executable = shell if posix else None,
        start_new_session = posix,
    )
    logger.debug(f"Started pid {process.pid}: {command}")

    waiters = {asyncio.ensure_future(process.communicate())}
    cancel_waiter = None
    if cancel_token is not None:
        cancel_waiter = asyncio.ensure_future(cancel_token.wait())
        waiters.add(cancel_waiter)

    communicate = next(iter(waiters - {cancel_waiter}))
    try:
        done, _ = await asyncio.wait(waiters, timeout = timeout, return_when = asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _terminate(process, kill_grace)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if communicate not in done:
        await _terminate(process, kill_grace)
        communicate.cancel()
        if cancel_token is not None and cancel_token.cancelled:
            raise RunCancelled()
        raise CommandTimeoutError(timeout)

    stdout_bytes, stderr_bytes = communicate.result()
    return {
        "stdout": _truncate(stdout_bytes.decode("utf-8", errors = "replace"), MAX_STDOUT_CHARS),
        "stderr": _truncate(stderr_bytes.decode("utf-8", errors = "replace"), MAX_STDERR_CHARS),
        "code": process.returncode,
    }


async def _terminate(process: asyncio.subprocess.Process, grace: float) -> None:
    """Graceful terminate of the whole process group, then kill after `grace` seconds."""
    if process.returncode is not None:
        return
    _send_signal(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout = grace)
        return
    except asyncio.TimeoutError:
        logger.warning(f"pid {process.pid} ignored SIGTERM, killing")
    _send_signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
    await process.wait()


def _send_signal(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if sys.platform != "win32":
            os.killpg(process.pid, sig)
        elif sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except ProcessLookupError:
        pass


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n...truncated..."


def format_command_output(output: Dict[str, object]) -> str:
    return json.dumps(output, ensure_ascii = False, indent = 2)
