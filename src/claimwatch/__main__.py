"""claimwatch entry point.

Examples:
  claimwatch login                     Sign in with Google (browser + PKCE)
  claimwatch verify "GDP grew by 5%"   Fact check a single claim
  arecord ... | encoder | claimwatch listen
                                       Stream base64 PCM16 lines from stdin
"""

import argparse
import asyncio
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from rich.console import Console
from rich.table import Table

from claimwatch.app import ClaimWatchApp
from claimwatch.config import get_settings
from claimwatch.credentials import ApiKeyCredential
from claimwatch.errors import ClaimWatchError
from claimwatch.events import AUTH, CLOSED, FACT_CHECK_RESULT, SETUP_COMPLETE, Event
from claimwatch.logging_setup import setup_logging
from claimwatch.verify.models import VerificationResult

logger = logging.getLogger(__name__)
console = Console()

_VERDICT_STYLES = {"True": "green", "False": "red", "Mixed": "yellow", "Unverified": "dim"}


def _version() -> str:
    try:
        return get_version("claimwatch")
    except PackageNotFoundError:
        return "0.0.0"


def print_result(title: str, result: VerificationResult | dict) -> None:
    data = result.to_dict() if isinstance(result, VerificationResult) else result
    style = _VERDICT_STYLES.get(data["verdict"], "")
    table = Table(title=title, show_header=False, title_justify="left")
    table.add_row("Verdict", f"[{style}]{data['verdict']}[/{style}]" if style else data["verdict"])
    table.add_row("Score", str(data["score"]) if data["score"] else "-")
    table.add_row("Explanation", data["explanation"])
    for source in data["sources"]:
        table.add_row("Source", f"{source['title']}  {source['uri']}")
    console.print(table)


async def cmd_login(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    console.print("Opening your browser for Google sign-in...")
    await app.login()
    console.print("[green]Logged in.[/green]")
    return 0


async def cmd_logout(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    await app.logout()
    console.print("Logged out.")
    return 0


async def cmd_status(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    active = app.policy.active
    if isinstance(active, ApiKeyCredential):
        console.print(f"Mode: API key ({app.policy.pool_size} in pool)")
    elif active is not None:
        state = "logged in" if app.tokens.is_authenticated else "not logged in"
        console.print(f"Mode: OAuth ({state})")
    else:
        console.print("No credential configured.")
    return 0


async def cmd_verify(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    claim = " ".join(args.claim)
    with console.status("Checking claim..."):
        result = await app.verify(claim)
    print_result(claim, result)
    return 0


async def cmd_models(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    models = await app.gemini.list_models()
    table = Table("Model", "Display name", "Methods")
    for model in models:
        name = model.get("name", "")
        if args.filter and args.filter not in name:
            continue
        methods = ", ".join(model.get("supportedGenerationMethods", []))
        table.add_row(name, model.get("displayName", ""), methods)
    console.print(table)
    return 0


async def cmd_listen(app: ClaimWatchApp, args: argparse.Namespace) -> int:
    def on_event(event: Event) -> None:
        if event.event_type == SETUP_COMPLETE:
            console.print("[green]Live session established. Listening for claims...[/green]")
        elif event.event_type == FACT_CHECK_RESULT:
            print_result(event.data["claim_title"], event.data["result"])
        elif event.event_type == CLOSED and event.data.get("abnormal"):
            console.print(f"[red]Connection closed: {event.data.get('reason')}[/red]")
        elif event.event_type == AUTH and not event.data.get("success"):
            console.print(f"[yellow]{event.data.get('error')}[/yellow]")

    app.bus.subscribe("*", on_event)
    session = await app.start_session()

    loop = asyncio.get_running_loop()
    while not session.state.terminal:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        frame = line.strip()
        if frame:
            await app.send_audio(frame, args.mime_type)

    await app.stop_session()
    await app.wait_for_verifications()
    return 0


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "verify": cmd_verify,
    "models": cmd_models,
    "listen": cmd_listen,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claimwatch",
        description="Live claim detection and fact checking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default=None, help="Override CLAIMWATCH_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("login", help="Sign in with Google (opens a browser)")
    sub.add_parser("logout", help="Forget stored credentials")
    sub.add_parser("status", help="Show which credential is active")

    verify = sub.add_parser("verify", help="Fact check one claim")
    verify.add_argument("claim", nargs="+")

    models = sub.add_parser("models", help="List available models")
    models.add_argument(
        "--filter", default="flash", help="Only show names containing this (default: flash)"
    )

    listen = sub.add_parser("listen", help="Stream base64 PCM16 frames from stdin, one per line")
    listen.add_argument(
        "--mime-type", default=None, help="Audio mime type (default: audio/pcm;rate=16000)"
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    async with ClaimWatchApp(get_settings()) as app:
        return await COMMANDS[args.command](app, args)


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()
    settings = get_settings()
    setup_logging(level=args.log_level or settings.log_level)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    except ClaimWatchError as e:
        console.print(f"[red]Error:[/red] {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
