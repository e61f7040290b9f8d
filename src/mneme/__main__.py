"""Entry point: python -m mneme [chat]

- No args / "chat": Interactive CLI REPL
"""

from __future__ import annotations

import asyncio
import logging
import sys

from mneme.config import EngineConfig, MnemeConfig, load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_engine(config: EngineConfig):
    if config.name == "anthropic_api":
        from mneme.engines.anthropic_api import AnthropicAPIEngine

        kwargs = {"timeout": config.timeout}
        if config.model:
            kwargs["model"] = config.model
        return AnthropicAPIEngine(**kwargs)
    if config.name == "openai_compat":
        from mneme.engines.openai_compat import OpenAICompatEngine

        kwargs = {"timeout": config.timeout}
        if config.model:
            kwargs["model"] = config.model
        if config.base_url:
            kwargs["base_url"] = config.base_url
        if config.api_key_env:
            kwargs["api_key_env"] = config.api_key_env
        return OpenAICompatEngine(**kwargs)
    raise ValueError(f"Unknown engine: {config.name}")


def _build_mneme(config: MnemeConfig):
    from mneme.core import Mneme

    mneme = Mneme(config)
    mneme.add_engine(_build_engine(config.engine))
    return mneme


async def _chat(config: MnemeConfig) -> None:
    from mneme.connectors.cli import CLIConnector

    mneme = _build_mneme(config)
    mneme.add_connector(CLIConnector())
    try:
        await mneme.start()
    finally:
        await mneme.stop()


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "chat"

    if cmd in ("chat", "repl"):
        config = load_config()
        _setup_logging(config.log_level)
        try:
            asyncio.run(_chat(config))
        except KeyboardInterrupt:
            pass
    else:
        print("Usage: python -m mneme [chat]")
        print("  chat    Interactive CLI REPL (default)")
        sys.exit(1)


if __name__ == "__main__":
    main()
