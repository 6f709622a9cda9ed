"""
Mechanically checkable acceptance conditions.

Recognised forms (case-insensitive "file"):

    File "docs/a.txt" exists with the exact text "hello"
    File "docs/a.txt" contains "hello"
    File "docs/a.txt" exists
    `test -f docs/a.txt`            (shell, optionally followed by "passes")
    $ grep -q hello docs/a.txt      (shell)

Anything else is unresolvable. Callers decide what an unresolvable
condition means; nothing here ever passes a condition it cannot check.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

KIND_FILE_EXACT = "file_exact"
KIND_FILE_CONTAINS = "file_contains"
KIND_FILE_EXISTS = "file_exists"
KIND_SHELL = "shell"

NONE_VALUES = ("", "none", "n/a", "na", "-")

SHELL_TIMEOUT = 300

_PATH = r'["\'`]?(?P<path>[^"\'`\s]+?)["\'`]?'
_QUOTED = r'["\'](?P<text>.*)["\']'

FILE_EXACT_RE = re.compile(
    rf'\bfile\s+{_PATH}\s+exists\s+with\s+(?:the\s+)?exact\s+(?:text|contents?)\s+{_QUOTED}',
    re.IGNORECASE,
)
FILE_CONTAINS_RE = re.compile(rf'\bfile\s+{_PATH}\s+contains\s+{_QUOTED}', re.IGNORECASE)
FILE_EXISTS_RE = re.compile(rf'\bfile\s+{_PATH}\s+exists\b', re.IGNORECASE)
SHELL_BACKTICK_RE = re.compile(
    r'^\s*`(?P<cmd>[^`]+)`\s*(?:(?:passes|succeeds|exits\s+0)\s*)?\.?\s*$', re.IGNORECASE
)
SHELL_DOLLAR_RE = re.compile(r'^\s*\$\s+(?P<cmd>.+?)\s*$')


@dataclass(frozen=True)
class Condition:
    kind: str
    source: str
    path: Optional[str] = None
    text: Optional[str] = None
    command: Optional[str] = None


@dataclass
class CheckResult:
    """Outcome of evaluating one condition.

    resolved=False means the condition was not checked at all; ok is then
    always False.
    """
    condition: Optional[Condition]
    resolved: bool
    ok: bool
    detail: str = ""


def is_none(text: str | None) -> bool:
    """True for a Verification field that declares no extra condition."""
    return text is None or text.strip().lower() in NONE_VALUES


def parse_condition(text: str) -> Optional[Condition]:
    """Parse text into a Condition, or None if it is not mechanically checkable."""
    if text is None:
        return None

    for pattern in (SHELL_BACKTICK_RE, SHELL_DOLLAR_RE):
        match = pattern.match(text)
        if match:
            return Condition(kind=KIND_SHELL, source=text, command=match.group("cmd").strip())

    match = FILE_EXACT_RE.search(text)
    if match:
        return Condition(kind=KIND_FILE_EXACT, source=text, path=match.group("path"), text=match.group("text"))

    match = FILE_CONTAINS_RE.search(text)
    if match:
        return Condition(kind=KIND_FILE_CONTAINS, source=text, path=match.group("path"), text=match.group("text"))

    match = FILE_EXISTS_RE.search(text)
    if match:
        return Condition(kind=KIND_FILE_EXISTS, source=text, path=match.group("path"))

    return None


def is_checkable(text: str) -> bool:
    return parse_condition(text) is not None


def _read(workdir: Path, rel: str) -> str | None:
    path = workdir / rel
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read {path}: {e}")
        return None


def evaluate(condition: Condition, workdir: Path, dry_run: bool = False) -> CheckResult:
    """Evaluate a parsed condition against the working directory.

    Shell conditions are not executed when dry_run is set; they come back
    unresolved.
    """
    workdir = Path(workdir)

    if condition.kind == KIND_FILE_EXISTS:
        if (workdir / condition.path).exists():
            return CheckResult(condition, True, True, f"{condition.path} exists")
        return CheckResult(condition, True, False, f"{condition.path} does not exist")

    if condition.kind in (KIND_FILE_EXACT, KIND_FILE_CONTAINS):
        content = _read(workdir, condition.path)
        if content is None:
            return CheckResult(condition, True, False, f"{condition.path} does not exist or is unreadable")
        if condition.kind == KIND_FILE_EXACT:
            actual = content.rstrip("\r\n")
            if actual == condition.text:
                return CheckResult(condition, True, True, f"{condition.path} has the expected text")
            return CheckResult(
                condition, True, False,
                f"{condition.path} text mismatch: expected {condition.text!r}, found {actual[:80]!r}",
            )
        if condition.text in content:
            return CheckResult(condition, True, True, f"{condition.path} contains {condition.text!r}")
        return CheckResult(condition, True, False, f"{condition.path} does not contain {condition.text!r}")

    if condition.kind == KIND_SHELL:
        if dry_run:
            return CheckResult(condition, False, False, f"shell check not run in dry-run: {condition.command}")
        return _run_shell(condition, workdir)

    return CheckResult(condition, False, False, f"unsupported condition kind: {condition.kind}")


def _run_shell(condition: Condition, workdir: Path) -> CheckResult:
    logger.debug(f"Running verification command: {condition.command}")
    try:
        result = subprocess.run(
            condition.command,
            shell=True,
            cwd=str(workdir),
            capture_output=True,
            text=True,
            timeout=SHELL_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return CheckResult(condition, True, False, f"`{condition.command}` timed out after {SHELL_TIMEOUT}s")
    except OSError as e:
        return CheckResult(condition, True, False, f"`{condition.command}` could not run: {e}")

    if result.returncode == 0:
        return CheckResult(condition, True, True, f"`{condition.command}` exited 0")

    output = (result.stderr or result.stdout).strip()
    detail = f"`{condition.command}` exited {result.returncode}"
    if output:
        detail += f": {output.splitlines()[-1][:200]}"
    return CheckResult(condition, True, False, detail)


def check_text(text: str, workdir: Path, dry_run: bool = False) -> CheckResult:
    """Parse and evaluate in one step."""
    condition = parse_condition(text)
    if condition is None:
        return CheckResult(None, False, False, f"cannot interpret condition: {text!r}")
    return evaluate(condition, workdir, dry_run=dry_run)
