"""Token usage extraction from harness output streams."""

from __future__ import annotations

import re

from swarm_queue.orchestrator.backend.base import TokenUsage

_PAIRED_TOKENS = re.compile(
    r"([\d,]+)\s*input\s*tokens.*?([\d,]+)\s*output\s*tokens",
    re.IGNORECASE | re.DOTALL,
)
_JSON_INPUT_TOKENS = re.compile(r'"(?:input_tokens|prompt_tokens)"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_OUTPUT_TOKENS = re.compile(
    r'"(?:output_tokens|completion_tokens)"\s*:\s*(\d+)',
    re.IGNORECASE,
)
_INPUT_TOKENS = re.compile(r"(?:input|prompt)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


def extract_token_usage(text: str) -> TokenUsage | None:
    """Best-effort input/output token counts; ``None`` when nothing is recognizable."""

    paired = _PAIRED_TOKENS.search(text)
    if paired is not None:
        input_tokens = _parse_int(paired.group(1))
        output_tokens = _parse_int(paired.group(2))
        if input_tokens is not None and output_tokens is not None:
            return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)

    for input_pattern, output_pattern in (
        (_JSON_INPUT_TOKENS, _JSON_OUTPUT_TOKENS),
        (_INPUT_TOKENS, _OUTPUT_TOKENS),
    ):
        input_tokens = _extract_int(input_pattern, text)
        output_tokens = _extract_int(output_pattern, text)
        if input_tokens is None and output_tokens is None:
            continue
        return TokenUsage(input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)
    return None


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    return _parse_int(match.group(1))


def _parse_int(raw: str) -> int | None:
    cleaned = raw.replace(",", "").strip()
    if not cleaned.isdigit():
        return None
    return int(cleaned)
