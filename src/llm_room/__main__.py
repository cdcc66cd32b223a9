"""Module execution entrypoint (`python -m llm_room`)."""

from __future__ import annotations

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
