"""
Logging setup and structured event helpers for Rabbithole.

configure_logging() is called once from the app lifespan. It sends every
record to logs/rabbithole.log and, for local runs, to stdout.

Events that are worth querying later (LLM calls, tree writes, validation
runs) go out as one JSON object per line:

    Tree: {"event": "tree_mutation", "operation": "add_child", ...}

Environment variables:
  RABBITHOLE_LOG_DIR           directory for rabbithole.log (default: <project>/logs)
  RABBITHOLE_LOG_LEVEL         DEBUG | INFO | WARNING | ERROR (default: INFO)
  RABBITHOLE_LOG_LLM_CONTENT   1 to include full prompts and responses
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

LOG_DIR = Path(os.getenv("RABBITHOLE_LOG_DIR", str(Path(__file__).resolve().parent.parent.parent / "logs")))
LOG_LEVEL = os.getenv("RABBITHOLE_LOG_LEVEL", "INFO").upper()
LOG_LLM_CONTENT = os.getenv("RABBITHOLE_LOG_LLM_CONTENT", "0").lower() in ("1", "true", "yes")

FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s | %(name)s | %(message)s"
PREVIEW_CHARS = 200


def configure_logging(
    level: str = LOG_LEVEL,
    log_dir: Optional[Path] = None,
    log_to_console: bool = True,
) -> None:
    """Install file (and console) handlers on the root logger, replacing any existing ones."""
    target = Path(log_dir or LOG_DIR)
    target.mkdir(parents=True, exist_ok=True)
    level_value = getattr(logging, level.upper(), logging.INFO)

    file_handler = logging.FileHandler(target / "rabbithole.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    handlers: list[logging.Handler] = [file_handler]
    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console)

    root = logging.getLogger()
    # uvicorn --reload re-runs startup in the same process
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(level_value)
    for handler in handlers:
        handler.setLevel(level_value)
        root.addHandler(handler)

    logging.getLogger("backend").setLevel(level_value)


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _emit(logger: logging.Logger, level: int, label: str, event: str, fields: dict[str, Any], extra: Optional[dict[str, Any]]) -> None:
    payload = {"event": event, **fields}
    if extra:
        payload.update(extra)
    logger.log(level, "%s: %s", label, json.dumps(payload, default=str))


def log_llm_call(
    logger: logging.Logger,
    purpose: str,
    model: str,
    prompt: str,
    response: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_sec: Optional[float] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """One completed model call. Prompt and response are truncated unless RABBITHOLE_LOG_LLM_CONTENT=1."""
    fields = {
        "purpose": purpose,
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "duration_sec": duration_sec,
        "prompt_preview": _preview(prompt),
        "response_preview": _preview(response),
    }
    if LOG_LLM_CONTENT:
        fields["prompt_full"] = prompt
        fields["response_full"] = response
    _emit(logger, logging.INFO, "LLM call", "llm_call", fields, extra)


def log_tree_mutation(
    logger: logging.Logger,
    operation: str,
    collection_id: str,
    owner_id: str,
    node_ids: Optional[list[str]] = None,
    attempts: int = 1,
    duration_sec: Optional[float] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """A committed tree write. Logged at WARNING when it needed more than one attempt."""
    fields = {
        "operation": operation,
        "collection_id": collection_id,
        "owner_id": owner_id,
        "node_ids": node_ids or [],
        "attempts": attempts,
        "duration_sec": duration_sec,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    _emit(logger, logging.WARNING if attempts > 1 else logging.INFO, "Tree", "tree_mutation", fields, extra)


def log_tree_validation(logger: logging.Logger, collection_id: str, owner_id: str, issue_codes: list[str]) -> None:
    """Result of a structural check; WARNING when anything was found."""
    fields = {
        "collection_id": collection_id,
        "owner_id": owner_id,
        "issues": len(issue_codes),
        "codes": sorted(set(issue_codes)),
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    _emit(logger, logging.WARNING if issue_codes else logging.INFO, "Validation", "tree_validation", fields, None)
