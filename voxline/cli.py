"""Voxline CLI entry point.

Usage:
    voxline serve --config voxline.yaml
    voxline init [--output voxline.yaml]
    voxline providers
    voxline presets
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the WebSocket server."""
    from voxline.config import load_config

    config_path = args.config
    if config_path and not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    config = load_config(config_path)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    logger.remove()
    logger.add(sys.stderr, level=args.log_level or config.logging.level)

    logger.info(f"Voxline starting with config: {config_path or '(defaults)'}")
    logger.info(
        f"STT: {config.providers.stt_backend}, LLM: {config.providers.llm_backend} "
        f"({config.providers.llm_model}), TTS: {config.backends.tts}"
    )

    from voxline.server import run_server

    try:
        run_server(config)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from voxline.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nSet your API keys and run: voxline serve --config {output}")


def cmd_providers(args: argparse.Namespace) -> None:
    """List backends and whether their credentials are present."""
    from voxline.config import CredentialsConfig
    from voxline.providers.registry import BACKEND_KEYS, ProviderRegistry

    registry = ProviderRegistry()
    credentials = CredentialsConfig()

    def status(name: str) -> str:
        field = BACKEND_KEYS.get(name)
        if field is None:
            return "no key needed"
        return "ready" if getattr(credentials, field) else "missing API key"

    print("\nVoxline Backends:")
    print("=" * 40)
    for kind, names in (
        ("STT", registry.available_transcribers),
        ("LLM", registry.available_responders),
        ("TTS", registry.available_synthesizers),
    ):
        for name in names:
            print(f"  {kind:<4} {name:<12} {status(name)}")
    print()


def cmd_presets(args: argparse.Namespace) -> None:
    """List VAD presets and agent profiles."""
    from voxline.config import AGENT_PROFILES, VAD_PRESETS

    print("\nVAD presets:")
    print("=" * 40)
    for name, (floor, silence_ms, speech_ms) in VAD_PRESETS.items():
        print(f"  {name:<10} floor={floor} silence={silence_ms:.0f}ms speech={speech_ms:.0f}ms")

    print("\nAgent profiles:")
    print("=" * 40)
    for name, profile in AGENT_PROFILES.items():
        print(f"  {name:<13} {profile['llm_backend']}/{profile['llm_model']} voice={profile['tts_voice']}")
    print()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="voxline",
        description="Voxline - real-time voice conversation core",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `voxline serve`
    serve_parser = subparsers.add_parser("serve", help="Run the WebSocket server")
    serve_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to the YAML config file (default: built-in defaults)",
    )
    serve_parser.add_argument("--host", default=None, help="Override the listen host")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Override the listen port")
    serve_parser.add_argument(
        "--log-level",
        default=None,
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    # `voxline init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="voxline.yaml",
        help="Output file path (default: voxline.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    # `voxline providers`
    subparsers.add_parser("providers", help="List STT/LLM/TTS backends")

    # `voxline presets`
    subparsers.add_parser("presets", help="List VAD presets and agent profiles")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "init":
        cmd_init(args)
    elif args.command == "providers":
        cmd_providers(args)
    elif args.command == "presets":
        cmd_presets(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
