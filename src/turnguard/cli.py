"""CLI entry point for turnguard."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.text import Text

from . import __version__
from .boot import (
    Notifier,
    Runtime,
    build_runtime,
    build_supervisor,
    install_shutdown_handlers,
    run_boot,
)
from .config import ConfigValidationError, TurnguardConfig, load_config
from .errors import ProviderError, ProviderUnavailable, TurnStuck
from .providers import create_provider, list_providers
from .supervisor import TurnResponse
from .ui import (
    add_output_mode_argument,
    configure_logging,
    make_console,
    render_panel,
    render_table,
    resolve_output_mode,
)
from .util import format_duration, truncate_text

EXIT_OK = 0
EXIT_PROVIDER_UNAVAILABLE = 1
EXIT_TURN_FAILED = 1
EXIT_CONFIG = 2
EXIT_CIRCUIT_OPEN = 3
EXIT_INTERRUPTED = 130


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="turnguard",
        description="Crash-safe supervisor for conversational agent turns.",
    )
    p.add_argument("--version", action="version", version=f"turnguard {__version__}")
    p.add_argument("--cwd", type=Path, default=None, help="Project directory (default: current)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    add_output_mode_argument(p)

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("boot", help="Run crash recovery and the circuit breaker check")

    ask = sub.add_parser("ask", help="Boot, then run one supervised turn")
    ask.add_argument("user", help="User id owning the turn")
    ask.add_argument("prompt", nargs="+")

    turns = sub.add_parser("turns", help="Show logged turns (oldest first)")
    turns.add_argument("--limit", type=int, default=20)
    turns.add_argument("--json", action="store_true")

    crashes = sub.add_parser("crashes", help="Show recorded crashes")
    crashes.add_argument("--json", action="store_true")

    sub.add_parser("reset", help="Clear crash history and the pending-turn marker")

    params = sub.add_parser("params", help="Show or change saved default parameters")
    params_sub = params.add_subparsers(dest="params_command", metavar="ACTION")
    params_sub.add_parser("show", help="Print current parameters")
    params_set = params_sub.add_parser("set", help="Save KEY=VALUE pairs as defaults")
    params_set.add_argument("pairs", nargs="+", metavar="KEY=VALUE")
    params_sub.add_parser("reset", help="Forget saved defaults")

    sub.add_parser("health", help="Exit 0 when the supervisor may start")
    sub.add_parser("providers", help="List registered providers and availability")
    return p


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_pairs(pairs: list[str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigValidationError(f"expected KEY=VALUE, got {pair!r}")
        out[key] = _parse_value(value.strip())
    return out


async def _check_provider(config: TurnguardConfig) -> None:
    try:
        provider = create_provider(config.provider, cwd=config.cwd)
    except KeyError:
        raise ProviderUnavailable(config.provider) from None
    if not await provider.is_available():
        raise ProviderUnavailable(config.provider)


def _stderr_notifier(console: Console) -> Notifier:
    err = Console(file=sys.stderr, no_color=console.no_color, highlight=False)

    def notify(user_id: str, text: str) -> None:
        err.print(Text(f"[notice for {user_id}] {text}"))

    return notify


def _print_boot_notice(console: Console, runtime: Runtime) -> int:
    report = run_boot(
        runtime.journal,
        runtime.breaker,
        notify=_stderr_notifier(console),
        user_ids=runtime.config.user_ids,
    )
    if report.halted:
        render_panel(console, report.notice or "", title="Circuit breaker", style="red")
        return EXIT_CIRCUIT_OPEN
    if report.crash is not None:
        render_panel(console, report.notice or "", title="Crash recovered", style="yellow")
    return EXIT_OK


def cmd_boot(runtime: Runtime, console: Console) -> int:
    code = _print_boot_notice(console, runtime)
    if code != EXIT_OK:
        return code
    try:
        asyncio.run(_check_provider(runtime.config))
    except ProviderUnavailable as exc:
        console.print(Text(str(exc), style="red"))
        return EXIT_PROVIDER_UNAVAILABLE
    console.print(Text(f"ready (provider: {runtime.config.provider})", style="green"))
    return EXIT_OK


async def _ask(runtime: Runtime, user_id: str, prompt: str) -> TurnResponse:
    remove_handlers = install_shutdown_handlers(runtime.journal)
    try:
        await _check_provider(runtime.config)
        supervisor = build_supervisor(runtime)
        return await supervisor.process(user_id, prompt)
    finally:
        remove_handlers()


def cmd_ask(args: argparse.Namespace, runtime: Runtime, console: Console) -> int:
    code = _print_boot_notice(console, runtime)
    if code != EXIT_OK:
        return code

    prompt = " ".join(args.prompt)
    try:
        response = asyncio.run(_ask(runtime, args.user, prompt))
    except ProviderUnavailable as exc:
        console.print(Text(str(exc), style="red"))
        return EXIT_PROVIDER_UNAVAILABLE
    except (TurnStuck, ProviderError) as exc:
        console.print(Text(exc.user_message(), style="red"))
        return EXIT_TURN_FAILED
    except asyncio.CancelledError:
        console.print(Text("shut down by signal", style="yellow"))
        return EXIT_OK
    except KeyboardInterrupt:
        console.print(Text("interrupted", style="yellow"))
        return EXIT_INTERRUPTED

    console.print(Text(response.text))
    console.print(
        Text(
            f"{response.turn_id} · {response.provider}"
            f" · {format_duration(response.duration_ms // 1000)}",
            style="dim",
        )
    )
    return EXIT_OK


def cmd_turns(args: argparse.Namespace, runtime: Runtime, console: Console) -> int:
    turns = runtime.turn_store.turns()
    if args.limit > 0:
        turns = turns[-args.limit :]

    if args.json:
        json.dump([t.to_dict() for t in turns], sys.stdout, indent=2)
        print()
        return EXIT_OK

    if not turns:
        console.print(Text("no logged turns", style="dim"))
        return EXIT_OK
    rows = [
        (
            t.turn_id,
            t.timestamp,
            "completed" if t.completed else f"aborted: {t.abort_reason or '?'}",
            format_duration(t.duration_ms // 1000),
            len(t.actions),
            truncate_text(t.user_prompt, 60),
        )
        for t in turns
    ]
    render_table(
        console,
        title="Logged turns",
        headers=("Turn", "Started", "Status", "Duration", "Actions", "Prompt"),
        rows=rows,
        no_wrap_columns=(0, 2),
    )
    return EXIT_OK


def cmd_crashes(args: argparse.Namespace, runtime: Runtime, console: Console) -> int:
    crashes = runtime.breaker.crashes()
    if args.json:
        json.dump([c.to_dict() for c in crashes], sys.stdout, indent=2)
        print()
        return EXIT_OK

    if not crashes:
        console.print(Text("no recorded crashes", style="green"))
        return EXIT_OK
    rows = [
        (
            idx,
            c.timestamp,
            truncate_text(c.pending_prompt, 60),
            len(c.error_log.splitlines()),
        )
        for idx, c in enumerate(crashes, start=1)
    ]
    render_table(
        console,
        title=f"Crashes ({len(crashes)} of {runtime.breaker.threshold} allowed)",
        headers=("#", "Time", "Pending prompt", "Error lines"),
        rows=rows,
    )
    return EXIT_OK


def cmd_reset(runtime: Runtime, console: Console) -> int:
    runtime.breaker.reset()
    console.print(Text("crash history cleared", style="green"))
    return EXIT_OK


def cmd_params(args: argparse.Namespace, runtime: Runtime, console: Console) -> int:
    params = runtime.params
    action = args.params_command or "show"
    if action == "set":
        params.set_many(_parse_pairs(args.pairs))
        params.save_as_defaults()
    elif action == "reset":
        params.forget_defaults()

    rows = [(key, json.dumps(value)) for key, value in sorted(params.get().items())]
    render_table(console, title="Parameters", headers=("Key", "Value"), rows=rows)
    return EXIT_OK


def cmd_health(runtime: Runtime, console: Console) -> int:
    config = runtime.config
    breaker = runtime.breaker
    pending = runtime.journal.pending_turn()
    rows = [
        ("state_dir", str(config.state_dir)),
        ("provider", config.provider),
        ("crashes", f"{breaker.crash_count()} / {breaker.threshold}"),
        ("pending turn", truncate_text(pending.prompt, 60) if pending else "-"),
    ]
    render_table(console, title="Health", headers=("Check", "Value"), rows=rows)
    if not config.state_dir.is_dir():
        return EXIT_CONFIG
    if breaker.should_halt():
        return EXIT_CIRCUIT_OPEN
    return EXIT_OK


async def _probe_providers(config: TurnguardConfig) -> list[tuple[str, str, bool, int]]:
    out: list[tuple[str, str, bool, int]] = []
    for name in list_providers():
        provider = create_provider(name, cwd=config.cwd)
        available = await provider.is_available()
        models = await provider.available_models()
        out.append((name, provider.display_name, available, len(models)))
    return out


def cmd_providers(runtime: Runtime, console: Console) -> int:
    configured = runtime.config.provider
    rows = [
        (
            f"{name} *" if name == configured else name,
            display,
            "yes" if available else "no",
            models,
        )
        for name, display, available, models in asyncio.run(_probe_providers(runtime.config))
    ]
    render_table(
        console,
        title="Providers (* = configured)",
        headers=("Name", "Display name", "Available", "Models"),
        rows=rows,
    )
    return EXIT_OK


def run(argv: list[str] | None = None) -> int:
    parser = _parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_OK

    mode = resolve_output_mode(args.output)
    configure_logging(mode, verbose=args.verbose)
    console = make_console(mode)

    try:
        runtime = build_runtime(load_config(args.cwd))
        if args.command == "boot":
            return cmd_boot(runtime, console)
        if args.command == "ask":
            return cmd_ask(args, runtime, console)
        if args.command == "turns":
            return cmd_turns(args, runtime, console)
        if args.command == "crashes":
            return cmd_crashes(args, runtime, console)
        if args.command == "reset":
            return cmd_reset(runtime, console)
        if args.command == "params":
            return cmd_params(args, runtime, console)
        if args.command == "health":
            return cmd_health(runtime, console)
        if args.command == "providers":
            return cmd_providers(runtime, console)
    except ConfigValidationError as exc:
        console.print(Text(f"config error: {exc}", style="red"))
        return EXIT_CONFIG
    parser.error(f"unknown command {args.command!r}")
    return EXIT_CONFIG


def main(argv: list[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
