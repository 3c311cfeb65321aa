from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from pathlib import Path
from typing import Any

import uvicorn

from .api import create_app
from .client import HuntClient
from .errors import HuntError
from .lint import findings_to_json, findings_to_text, has_errors, lint_catalog
from .paths import catalog_path
from .service import HuntService


def _service() -> HuntService:
    return HuntService.create()


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2))


def _pin(value: str | None, prompt: str = "PIN: ") -> str:
    if value:
        return value
    return getpass.getpass(prompt)


def _admin_pin(value: str | None) -> str:
    return _pin(value or os.environ.get("HTH_ADMIN_PIN", "").strip(), "Admin PIN: ")


def _resumed_client(service: HuntService) -> HuntClient | None:
    client = service.client(source="cli")
    if client.resume() is None:
        print("No active session. Run `hth login` first.", file=sys.stderr)
        return None
    return client


def _print_notices(client: HuntClient) -> None:
    for notice in client.drain_notices():
        print(f"[{notice.kind}] {notice.message}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Hunting the Heavens CLI")
    sub = parser.add_subparsers(dest="command", required=True)
    default_team = os.environ.get("HTH_TEAM", "")

    register_cmd = sub.add_parser("register", help="Register a new team")
    register_cmd.add_argument("--name", required=True, help="Team name")
    register_cmd.add_argument("--pin", default=None, help="4-10 alphanumeric PIN")
    register_cmd.add_argument("--confirm-pin", default=None, help="Repeat the PIN")

    login_cmd = sub.add_parser("login", help="Log in and store the session locally")
    login_cmd.add_argument("--name", default=default_team, required=not default_team, help="Team name (HTH_TEAM)")
    login_cmd.add_argument("--pin", default=None)

    sub.add_parser("logout", help="Drop the local session")
    sub.add_parser("status", help="Show team progress")
    sub.add_parser("sections", help="Show section gates")

    riddles_cmd = sub.add_parser("riddles", help="Show the riddles of one section")
    riddles_cmd.add_argument("--section", type=int, required=True)

    submit_cmd = sub.add_parser("submit", help="Submit an answer")
    submit_cmd.add_argument("--section", type=int, required=True)
    submit_cmd.add_argument("--index", type=int, required=True, help="Riddle index within the section")
    submit_cmd.add_argument("--answer", required=True)

    point_cmd = sub.add_parser("point", help="Request telescope pointing at a solved section 1 subject")
    point_cmd.add_argument("--subject", default=None, help="Subject id; omit to list candidates")

    forgot_cmd = sub.add_parser("forgot-password", help="Flag the team for admin PIN recovery")
    forgot_cmd.add_argument("--name", default=default_team, required=not default_team)
    forgot_cmd.add_argument("--confirm", action="store_true", help="Acknowledge the warning and send the flag")

    admin_cmd = sub.add_parser("admin", help="Admin console operations")
    admin_sub = admin_cmd.add_subparsers(dest="admin_command", required=True)
    admin_bootstrap = admin_sub.add_parser("bootstrap", help="Create the admin account once")
    admin_bootstrap.add_argument("--pin", default=None, help="Admin PIN (HTH_ADMIN_PIN)")
    admin_queue = admin_sub.add_parser("queue", help="List verification requests")
    admin_queue.add_argument("--status", default="pending", choices=["pending", "approved", "auto-verified", "rejected", "all"])
    admin_queue.add_argument("--pin", default=None)
    admin_decide = admin_sub.add_parser("decide", help="Approve or reject a pending request")
    admin_decide.add_argument("request_id")
    admin_decide.add_argument("decision", choices=["approve", "reject"])
    admin_decide.add_argument("--pin", default=None)
    admin_unlock = admin_sub.add_parser("unlock", help="Toggle a section gate")
    admin_unlock.add_argument("--toggle", default="3", choices=["1_2", "3"])
    admin_unlock.add_argument("--off", action="store_true", help="Close instead of open")
    admin_unlock.add_argument("--pin", default=None)
    admin_sub.add_parser("leaderboard", help="Teams by points")

    catalog_cmd = sub.add_parser("catalog", help="Riddle catalog operations")
    catalog_sub = catalog_cmd.add_subparsers(dest="catalog_command", required=True)
    catalog_lint = catalog_sub.add_parser("lint", help="Lint a riddle catalog")
    catalog_lint.add_argument("--path", default=None, help="Catalog YAML (default: HTH_CATALOG_PATH or bundled)")
    catalog_lint.add_argument("--format", default="text", choices=["text", "json"])

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    if args.command == "catalog":
        # Linting must work on catalogs the service itself would refuse to load.
        findings = lint_catalog(Path(args.path) if args.path else catalog_path())
        print(findings_to_json(findings) if args.format == "json" else findings_to_text(findings))
        return 1 if has_errors(findings) else 0

    service = _service()

    try:
        return _dispatch(args, service)
    except HuntError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 2


def _dispatch(args: argparse.Namespace, service: HuntService) -> int:  # noqa: PLR0911, PLR0912
    if args.command == "register":
        pin = _pin(args.pin)
        confirm = _pin(args.confirm_pin, "Confirm PIN: ")
        profile = service.accounts.register(args.name, pin, confirm, source="cli")
        _print_json({"team": profile.name, "message": "Profile Established. Log In to proceed."})
        return 0

    if args.command == "login":
        client = service.client(source="cli")
        state = client.login(args.name, _pin(args.pin))
        _print_json({"team": state.profile.name if state.profile else None, "screen": state.screen})
        return 0

    if args.command == "logout":
        service.client(source="cli").logout()
        print("Logged out.")
        return 0

    if args.command == "forgot-password":
        result = service.accounts.forgot_password(args.name, confirm=args.confirm, source="cli")
        _print_json(result.to_dict())
        return 0

    if args.command in {"status", "sections", "riddles", "submit", "point"}:
        client = _resumed_client(service)
        if client is None:
            return 1
        if args.command == "status":
            _print_json(client.status())
        elif args.command == "sections":
            _print_json(client.sections())
        elif args.command == "riddles":
            client.select_section(args.section)
            _print_json(client.riddle_board(args.section))
        elif args.command == "submit":
            result = client.submit_answer(args.section, args.index, args.answer)
            _print_json(
                {
                    "outcome": result.outcome,
                    "effects": sorted(result.effects),
                    "points": result.next_profile.points,
                    "stars_found": result.next_profile.stars_found,
                }
            )
        elif args.subject is None:
            _print_json({"eligible": client.engine.pointing_eligible(client.profile), "candidates": client.pointing_candidates()})
        else:
            entry = client.request_pointing(args.subject)
            _print_json(entry.to_record())
        _print_notices(client)
        return 0

    if args.command == "admin":
        if args.admin_command == "bootstrap":
            profile = service.accounts.bootstrap_admin(_admin_pin(args.pin))
            _print_json({"team": profile.name, "role": profile.role})
            return 0
        if args.admin_command == "leaderboard":
            _print_json(service.leaderboard())
            return 0
        service.verify_admin(_admin_pin(args.pin), source="cli")
        console = service.admin_console()
        try:
            if args.admin_command == "queue":
                requests = console.requests if args.status == "all" else [
                    item for item in console.requests if item.status == args.status
                ]
                _print_json({"stats": console.stats(), "requests": [item.to_record() for item in requests]})
                return 0
            if args.admin_command == "decide":
                _print_json(console.decide(args.request_id, args.decision, source="cli").to_dict())
                return 0
            if args.admin_command == "unlock":
                config = console.toggle_section(args.toggle, value=not args.off)
                _print_json(config.to_record())
                return 0
        finally:
            console.close()

    if args.command == "api":
        uvicorn.run(create_app(service), host=args.host, port=args.port)
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
