"""Logging utilities for gabble-bot."""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generator

# AI debug mode flag
_ai_debug: bool = False
_ai_debug_lock = Lock()


def set_ai_debug(enabled: bool) -> None:
    """Enable or disable AI debug logging."""
    global _ai_debug
    with _ai_debug_lock:
        _ai_debug = enabled


def is_ai_debug() -> bool:
    """Check if AI debug logging is enabled."""
    with _ai_debug_lock:
        return _ai_debug


# Full model inputs/outputs go here, only when AI debug is on
_ai_logger = logging.getLogger("gabble_bot.ai_debug")


def _dump(title: str, rule: str, sections: dict[str, Any]) -> None:
    """Write one AI-debug block; empty sections are left out."""
    lines = [f"\n{rule * 80}", title, rule * 80]
    for heading, body in sections.items():
        if not body:
            continue
        if not isinstance(body, str):
            body = json.dumps(body, indent=2, default=str)
        lines.append(f"\n--- {heading} ---\n{body}")
    _ai_logger.info("\n".join(lines))


def log_llm_call(
    operation: str,
    model: str,
    system_prompt: str | None = None,
    messages: list[dict[str, Any]] | None = None,
    has_media: bool = False,
) -> None:
    """Log the input to an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return
    _dump(
        f"LLM CALL: {operation}\nModel: {model}",
        "=",
        {
            "SYSTEM PROMPT": system_prompt,
            "MESSAGES": messages,
            "MEDIA": "[image attached]" if has_media else None,
        },
    )


def log_llm_response(
    operation: str,
    response_text: str | None = None,
    error: str | None = None,
) -> None:
    """Log the output from an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return
    _dump(
        f"LLM RESPONSE: {operation}",
        "-",
        {"RESPONSE TEXT": response_text, "ERROR": error},
    )


@dataclass
class SessionStats:
    """Cumulative statistics for a session.

    Thread-safe counters for tracking bot activity metrics.
    """

    messages_received: int = 0
    messages_skipped: int = 0
    inference_calls: int = 0
    inference_failures: int = 0
    context_evictions: int = 0
    images_requested: int = 0
    web_content_requested: int = 0
    dispatches: dict[str, int] = field(default_factory=dict)
    api_calls: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, stat: str, amount: int = 1) -> None:
        """Increment a stat counter."""
        with self._lock:
            if hasattr(self, stat) and stat != "_lock":
                current = getattr(self, stat)
                if isinstance(current, int):
                    setattr(self, stat, current + amount)

    def increment_dispatch(self, handler: str) -> None:
        """Track which response handler fired."""
        with self._lock:
            self.dispatches[handler] = self.dispatches.get(handler, 0) + 1

    def increment_api_call(self, model: str) -> None:
        """Track an API call to a specific model."""
        with self._lock:
            self.api_calls[model] = self.api_calls.get(model, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Return a summary of all stats."""
        with self._lock:
            return {
                "received": self.messages_received,
                "skipped": self.messages_skipped,
                "inference_calls": self.inference_calls,
                "failure_rate": (
                    f"{100 * self.inference_failures / max(1, self.inference_calls):.0f}%"
                ),
                "evictions": self.context_evictions,
                "dispatches": dict(self.dispatches),
                "api_calls": dict(self.api_calls),
            }

    def summary_line(self) -> str:
        """Return a single-line summary for logging."""
        with self._lock:
            failure_pct = 100 * self.inference_failures / max(1, self.inference_calls)
            dispatch_str = " ".join(
                f"{name}={count}" for name, count in sorted(self.dispatches.items())
            )

            return (
                f"received={self.messages_received} skipped={self.messages_skipped} "
                f"calls={self.inference_calls} failure_rate={failure_pct:.0f}% "
                f"evictions={self.context_evictions} {dispatch_str}"
            ).rstrip()


# Global session stats instance
_session_stats: SessionStats | None = None
_stats_lock = Lock()


def get_session_stats() -> SessionStats:
    """Get the global session stats instance."""
    global _session_stats
    with _stats_lock:
        if _session_stats is None:
            _session_stats = SessionStats()
        return _session_stats


def reset_session_stats() -> None:
    """Reset session stats (mainly for testing)."""
    global _session_stats
    with _stats_lock:
        _session_stats = SessionStats()


# Dedicated logger for LLM round summaries (always on)
_llm_logger = logging.getLogger("gabble_bot.llm")


def log_llm_round(
    component: str,
    model: str,
    tokens_in: int | None,
    tokens_out: int | None,
    stop_reason: str | None = None,
) -> None:
    """Log a summary of an LLM call (always on).

    Args:
        component: Which component made the call (e.g., "gateway/gemini")
        model: Model name used
        tokens_in: Input token count (None if unavailable)
        tokens_out: Output token count (None if unavailable)
        stop_reason: Stop/finish reason reported by the backend
    """
    tokens_str = f"in={tokens_in or '?'} out={tokens_out or '?'}"
    stop_str = f" stop={stop_reason}" if stop_reason else ""

    _llm_logger.info(f"LLM_ROUND [{component}] model={model} {tokens_str}{stop_str}")


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str
) -> Generator[None, None, None]:
    """Context manager for timing operations.

    Logs at DEBUG level on completion.

    Example:
        with log_timing(logger, "Inference"):
            reply = await gateway.invoke(turns)
        # Logs: "Inference completed in 1.23ms"
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
