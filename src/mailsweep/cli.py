import argparse
import asyncio
import logging
import sys

import httpx

from mailsweep.config import settings
from mailsweep.errors import AuthError, ConfigurationError, MailsweepError
from mailsweep.sentry import flush as sentry_flush
from mailsweep.sentry import init_sentry, is_enabled

ACTION_CHOICES = ["delete", "archive", "mark_read", "mark_unread", "label"]


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def require_token() -> str:
    from mailsweep.google.auth import google_auth

    token = google_auth.access_token
    if not token:
        print("Error: Google account not connected")
        print("Run `mailsweep auth` first")
        sys.exit(1)
    return token


def authenticate(console: bool) -> None:
    from mailsweep.google.auth import extract_oauth_code, google_auth

    if not console:
        ok = google_auth.authenticate_interactive()
    else:
        started = google_auth.get_auth_url()
        if started is None:
            print("Error: could not start the OAuth flow")
            sys.exit(1)
        flow, auth_url = started
        print("Open this URL, approve access, then paste the redirect URL or code:\n")
        print(f"  {auth_url}\n")
        code = extract_oauth_code(input("Code: "))
        ok = bool(code) and google_auth.complete_auth_with_code(flow, code)

    if not ok:
        print(f"Authentication failed. Is the OAuth client file at {google_auth.credentials_path}?")
        sys.exit(1)
    print(f"Authenticated. Token saved to {google_auth.token_path}")


def logout() -> None:
    from mailsweep.google.auth import google_auth

    if google_auth.sign_out():
        print(f"Signed out. Removed {google_auth.token_path}")
    else:
        print("No Google account connected")


def check_config() -> None:
    from mailsweep.google.auth import google_auth

    print("mailsweep Configuration Check\n")

    checks = [
        ("Azure OpenAI credentials", settings.has_azure_openai),
        ("Google account connected", google_auth.load_saved_credentials()),
        ("Sentry DSN", settings.has_sentry),
        ("Error tracking active", is_enabled()),
    ]

    for name, configured in checks:
        status = "OK" if configured else "MISSING"
        symbol = "+" if configured else "-"
        print(f"  [{symbol}] {name}: {status}")

    print(f"\n  AI proxy URL: {settings.ai_proxy_url}")


def run_proxy(host: str | None, port: int | None) -> None:
    from mailsweep.proxy.server import serve

    try:
        serve(host, port)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)


async def preview(command: str, action: str | None, label: str | None) -> None:
    from mailsweep.services.cleanup import CleanupService

    token = require_token()
    service = CleanupService()
    try:
        session = await service.start_session(token)
        result = await service.preview(session, command, action_override=action, label_name=label)
    finally:
        await service.close()

    parsed = result.parsed
    print(f"Action: {parsed.action.value}")
    print(f"Query:  {parsed.query or '(all mail)'}")
    if parsed.label:
        print(f"Label:  {parsed.label}")
    print(f"\n{result.message_count} matching messages, showing {len(result.messages)}:\n")

    for message in result.messages:
        print(f"  {message.id}  {message.sender[:40]:<40}  {message.subject[:60]}")

    if result.suggestions:
        print("\nSuggested replies:")
        for idx, suggestion in enumerate(result.suggestions, start=1):
            print(f"  {idx}. {suggestion.text}")


def print_report(title: str, report) -> None:
    print(f"\n{title}:")
    print(f"  Succeeded: {report.success_count}/{report.total_count}")
    print(f"  Failed: {report.failed_count}")
    for failure in report.failures:
        print(f"    - {failure.id}: {failure.error_message}")


async def execute(message_ids: list[str], action: str, label: str | None) -> bool:
    from mailsweep.services.cleanup import CleanupService

    token = require_token()
    service = CleanupService()
    try:
        session = await service.start_session(token)
        report = await service.execute(session, message_ids, action, label_name=label)
    finally:
        await service.close()

    print_report(f"{action} results", report)
    return report.all_succeeded


async def draft(message_ids: list[str], text: str) -> bool:
    from mailsweep.services.cleanup import CleanupService

    token = require_token()
    service = CleanupService()
    try:
        session = await service.start_session(token)
        report = await service.create_drafts(session, message_ids, text)
    finally:
        await service.close()

    print_report("Draft results", report)
    return report.all_succeeded


def main() -> None:
    parser = argparse.ArgumentParser(description="Natural-language Gmail cleanup")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    auth_parser = subparsers.add_parser("auth", help="Connect a Google account")
    auth_parser.add_argument(
        "--console", action="store_true", help="Copy/paste flow for machines without a browser"
    )

    subparsers.add_parser("logout", help="Forget the cached Google token")

    subparsers.add_parser("check", help="Check configuration")

    serve_parser = subparsers.add_parser("serve", help="Run the AI proxy server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    preview_parser = subparsers.add_parser("preview", help="Preview a cleanup command")
    preview_parser.add_argument("text", help='e.g. "Archive newsletters from last year"')
    preview_parser.add_argument("--action", choices=ACTION_CHOICES, help="Skip AI parsing")
    preview_parser.add_argument("--label", help="Label name for --action label")

    execute_parser = subparsers.add_parser("execute", help="Apply an action to messages")
    execute_parser.add_argument("--action", choices=ACTION_CHOICES, required=True)
    execute_parser.add_argument("--label", help="Label name for --action label")
    execute_parser.add_argument("message_ids", nargs="+")

    draft_parser = subparsers.add_parser("draft", help="Create reply drafts for messages")
    draft_parser.add_argument("--text", required=True, help="Reply body")
    draft_parser.add_argument("message_ids", nargs="+")

    args = parser.parse_args()

    setup_logging()

    # Disabled when no DSN is configured
    init_sentry(dsn=settings.sentry_dsn, environment=settings.sentry_environment)

    ok = True
    try:
        if args.command == "auth":
            authenticate(args.console)
        elif args.command == "logout":
            logout()
        elif args.command == "check":
            check_config()
        elif args.command == "serve":
            run_proxy(args.host, args.port)
        elif args.command == "preview":
            asyncio.run(preview(args.text, args.action, args.label))
        elif args.command == "execute":
            ok = asyncio.run(execute(args.message_ids, args.action, args.label))
        elif args.command == "draft":
            ok = asyncio.run(draft(args.message_ids, args.text))
        else:
            parser.print_help()
    except AuthError as e:
        print(f"Error: {e}. Run `mailsweep auth` to reconnect.")
        ok = False
    except MailsweepError as e:
        print(f"Error: {e}")
        ok = False
    except httpx.HTTPError as e:
        print(f"Network error: {e}")
        print(f"Is the AI proxy running at {settings.ai_proxy_url}?")
        print("Start it with `mailsweep serve`.")
        ok = False
    finally:
        # Flush any pending Sentry events before exit
        sentry_flush(timeout=2.0)

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
