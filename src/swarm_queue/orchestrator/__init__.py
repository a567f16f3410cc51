"""Work queue orchestration for CLI coding-agent workers.

Workers share one JSON Lines file (``tasks.jsonl``) and coordinate only through
a token file next to it. Each cycle reads the whole store under the token,
changes it, and writes it back atomically. Items are executed outside the token
by spawning an external harness CLI (claude, codex, gemini, or any command),
whose exit code and output decide whether the item completes, is retried, or
fails permanently.
"""
