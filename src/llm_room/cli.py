"""LLM Room command-line entrypoint."""

from __future__ import annotations

import argparse
import os
from pathlib import Path

from dotenv import load_dotenv

from .api import create_app
from .config import AppConfig, apply_env_overrides, load_config
from .room import RoomRuntime


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the LLM Room API server")
    parser.add_argument("--config", default="config/config.yaml", help="Path to config YAML")
    parser.add_argument("--host", default=None, help="API host override")
    parser.add_argument("--port", type=int, default=None, help="API port override")
    parser.add_argument("--store", choices=["redis", "memory"], default=None, help="Store backend override")
    parser.add_argument("--run-id", default=None, help="Event log run id")
    return parser.parse_args()


def _resolve_config_path(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    # Source checkout: fall back to the repo-root config directory.
    return Path(__file__).resolve().parents[2] / candidate


def _load_runtime_config(path: str, store_override: str | None, port_override: int | None) -> AppConfig:
    config = apply_env_overrides(load_config(_resolve_config_path(path)))
    if store_override is not None:
        config.store.backend = store_override
    if port_override is not None:
        if port_override <= 0:
            raise ValueError("--port must be > 0")
        config.api.port = port_override
    return config


def main() -> int:
    load_dotenv()
    args = _parse_args()

    config = _load_runtime_config(args.config, args.store, args.port)
    port_env = os.getenv("PORT", "").strip()
    if args.port is None and port_env.isdigit():
        config.api.port = int(port_env)

    import uvicorn

    runtime = RoomRuntime(config, run_id=args.run_id)
    try:
        uvicorn.run(
            create_app(runtime),
            host=args.host or config.api.host,
            port=config.api.port,
            log_level="warning",
        )
    finally:
        runtime.close()

    print("=== LLM Room stopped ===")
    print(f"run_id: {runtime.logger.run_id}")
    print(f"log_path: {runtime.logger.output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
