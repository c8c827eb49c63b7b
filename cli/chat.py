"""Command-line front end for the on-device assistant."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Optional, Sequence

from assistant import config as assistant_config
from assistant.context import FileContextProvider, StaticContextProvider
from assistant.coordinator import AssistantCoordinator, create_assistant
from assistant.errors import AssistantError, NotInitialized
from assistant.hardware import HardwareDescriptor
from assistant.telemetry import MemoryMonitor, MemoryThresholds, collect_system_metrics


def _split_assignment(text: str) -> tuple[str, str]:
    if "=" not in text:
        raise SystemExit(f"Invalid override '{text}'. Expected KEY=VALUE format.")
    key, value = text.split("=", 1)
    key = key.strip()
    if not key:
        raise SystemExit("Override key cannot be empty.")
    return key, value.strip()


def _normalize_override_path(raw: str) -> list[str]:
    tokens = [segment.strip() for segment in raw.split(".") if segment.strip()]
    if not tokens:
        raise SystemExit("Configuration path cannot be empty.")
    return [token.replace("-", "_").lower() for token in tokens]


def _assign_override(target: dict[str, Any], path: Sequence[str], value: Any) -> None:
    cursor: dict[str, Any] = target
    for token in path[:-1]:
        existing = cursor.setdefault(token, {})
        if not isinstance(existing, dict):
            raise SystemExit(f"Cannot assign override for {'.'.join(path)}; '{token}' is a non-mapping value.")
        cursor = existing
    cursor[path[-1]] = value


def _load_config(args: argparse.Namespace) -> dict[str, Any]:
    if getattr(args, "config", None):
        os.environ["ASSIST_CONFIG"] = args.config
    config = assistant_config.get_config()
    for assignment in getattr(args, "config_set", []) or []:
        key_path, raw_value = _split_assignment(assignment)
        _assign_override(config, _normalize_override_path(key_path), assistant_config.parse_override_value(raw_value))
    return config


def _configure_logging(config: dict[str, Any], verbose: bool) -> None:
    level_name = "DEBUG" if verbose else str(assistant_config.section("logging", config).get("level", "INFO"))
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _context_provider(args: argparse.Namespace) -> FileContextProvider | StaticContextProvider:
    page = getattr(args, "page", None)
    if page:
        return FileContextProvider(page, title=getattr(args, "title", None), url=getattr(args, "url", None))
    return StaticContextProvider()


async def _ready(assistant: AssistantCoordinator) -> None:
    async for status in assistant.initialize_steps():
        print(status, file=sys.stderr)
    if not assistant.is_initialized:
        raise NotInitialized(assistant.state.last_error or "")


async def _status(assistant: AssistantCoordinator, args: argparse.Namespace, config: dict[str, Any]) -> None:
    await assistant.initialize()
    monitor = MemoryMonitor(MemoryThresholds.from_mapping(assistant_config.section("resources", config)))
    payload = assistant.get_status().as_dict()
    payload["initialization_status"] = assistant.state.initialization_status
    payload["memory"] = monitor.current_status().as_dict()
    payload["recommended_quantization"] = monitor.recommended_quantization().value
    payload["host"] = collect_system_metrics()
    print(json.dumps(payload, indent=2))


async def _ask(assistant: AssistantCoordinator, args: argparse.Namespace, config: dict[str, Any]) -> None:
    await _ready(assistant)
    response = await assistant.process_query(
        args.query, include_context=not args.no_context, include_history=not args.no_history
    )
    print(response.text)


async def _stream(assistant: AssistantCoordinator, args: argparse.Namespace, config: dict[str, Any]) -> None:
    await _ready(assistant)
    async with assistant.stream_query(
        args.query, include_context=not args.no_context, include_history=not args.no_history
    ) as fragments:
        async for fragment in fragments:
            sys.stdout.write(fragment)
            sys.stdout.flush()
    sys.stdout.write("\n")


async def _tldr(assistant: AssistantCoordinator, args: argparse.Namespace, config: dict[str, Any]) -> None:
    await _ready(assistant)
    print(await assistant.summarize_page(page_title=args.title))


def _profiles(args: argparse.Namespace, config: dict[str, Any]) -> None:
    hardware = HardwareDescriptor(config=config)
    selected = assistant_config.section("model", config).get("profile")
    for profile in assistant_config.list_model_profiles(config):
        profile_id = str(profile.get("id"))
        print(json.dumps({
            "id": profile_id,
            "label": profile.get("label", profile_id),
            "selected": profile_id == selected,
            "supported": hardware.supports_profile(profile_id),
        }))


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument(
        "--set",
        dest="config_set",
        action="append",
        default=[],
        metavar="PATH=VALUE",
        help="Override configuration path (dot notation). Repeat for multiple overrides.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def _add_page_arguments(parser: argparse.ArgumentParser, *, required: bool = False) -> None:
    parser.add_argument("--page", required=required, help="Text file holding the current page content")
    parser.add_argument("--title", help="Page title (defaults to the file name)")
    parser.add_argument("--url", help="Page URL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to the on-device AI assistant.")
    sub = parser.add_subparsers(dest="command", required=True)

    status_cmd = sub.add_parser("status", help="Initialize and print assistant and memory status")
    _add_common_arguments(status_cmd)
    status_cmd.set_defaults(func=_status)

    for name, handler, help_text in (
        ("ask", _ask, "Ask a question and print the full answer"),
        ("stream", _stream, "Ask a question and print the answer as it is generated"),
    ):
        query_cmd = sub.add_parser(name, help=help_text)
        _add_common_arguments(query_cmd)
        _add_page_arguments(query_cmd)
        query_cmd.add_argument("query", help="Question for the assistant")
        query_cmd.add_argument("--no-context", action="store_true", help="Do not send page context")
        query_cmd.add_argument("--no-history", action="store_true", help="Do not send recent history as context")
        query_cmd.set_defaults(func=handler)

    tldr_cmd = sub.add_parser("tldr", help="Summarize a page in a few bullet points")
    _add_common_arguments(tldr_cmd)
    _add_page_arguments(tldr_cmd, required=True)
    tldr_cmd.set_defaults(func=_tldr)

    profiles_cmd = sub.add_parser("profiles", help="List runtime profiles and hardware support")
    _add_common_arguments(profiles_cmd)
    profiles_cmd.set_defaults(func=None, sync_func=_profiles)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = _load_config(args)
    _configure_logging(config, args.verbose)

    try:
        if args.func is None:
            args.sync_func(args, config)
            return 0
        assistant = create_assistant(_context_provider(args), config)
        asyncio.run(args.func(assistant, args, config))
    except AssistantError as exc:
        raise SystemExit(exc.message) from exc
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
