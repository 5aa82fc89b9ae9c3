"""Output formatting for stage results.

Stdout carries exactly one result document per run, as a single JSON line
or as flattened `key: value` text. Logging goes to stderr.
"""

import json
import sys

from ticketflow.lib.errors import TicketflowError

OUTPUT_JSON = "json"
OUTPUT_TEXT = "text"
OUTPUT_FORMATS = (OUTPUT_TEXT, OUTPUT_JSON)

MAX_FAILURE_OUTPUT_CHARS = 3000


def truncate_output(output: str, max_chars: int = MAX_FAILURE_OUTPUT_CHARS) -> str:
    """Truncate output, keeping start and end for context.

    Args:
        output: Text to truncate
        max_chars: Maximum characters to keep (default 3000)

    Returns:
        Original text if under limit, otherwise truncated with marker
    """
    if len(output) <= max_chars:
        return output
    marker = "\n\n... [truncated] ...\n\n"
    available = max_chars - len(marker)
    head_chars = (available * 2) // 3
    tail_chars = available - head_chars
    return f"{output[:head_chars]}{marker}{output[-tail_chars:]}"


def flatten(data, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into dotted (key, value) pairs."""
    rows: list[tuple[str, str]] = []
    if isinstance(data, dict):
        if not data and prefix:
            rows.append((prefix, "{}"))
        for key, value in data.items():
            rows.extend(flatten(value, f"{prefix}.{key}" if prefix else str(key)))
    elif isinstance(data, list):
        if not data:
            rows.append((prefix, "[]"))
        for i, value in enumerate(data):
            rows.extend(flatten(value, f"{prefix}[{i}]"))
    elif data is None:
        rows.append((prefix, "-"))
    elif isinstance(data, bool):
        rows.append((prefix, "true" if data else "false"))
    else:
        text = str(data)
        if "\n" in text:
            text = "\n    " + text.replace("\n", "\n    ")
        rows.append((prefix, text))
    return rows


def render(payload: dict, fmt: str = OUTPUT_TEXT) -> str:
    if fmt == OUTPUT_JSON:
        return json.dumps(payload, sort_keys=False, default=str)
    return "\n".join(f"{key}: {value}" for key, value in flatten(payload))


def succeed(script: str, data: dict, fmt: str = OUTPUT_TEXT, stream=None) -> None:
    payload = {"ok": True, "script": script}
    payload.update(data)
    print(render(payload, fmt), file=stream or sys.stdout)


def fail(script: str, error: Exception, fmt: str = OUTPUT_TEXT, stream=None) -> int:
    """Print a failure document and return the exit code for error."""
    exit_code = getattr(error, "exit_code", 1)
    payload = {
        "ok": False,
        "script": script,
        "error": type(error).__name__,
        "message": str(error),
        "exitCode": exit_code,
    }
    if isinstance(error, TicketflowError):
        for attr in ("expected", "remediation", "candidates"):
            value = getattr(error, attr, None)
            if value:
                payload[attr] = value
        stderr = getattr(error, "stderr", "")
        if stderr:
            payload["stderr"] = truncate_output(stderr.strip())
    print(render(payload, fmt), file=stream or sys.stdout)
    return exit_code
