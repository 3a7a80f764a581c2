"""Command-line interface for the feedback service."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from feedbackhub.accounts import AccountManager
from feedbackhub.config import Settings, load_settings
from feedbackhub.connector import MongoConnector
from feedbackhub.errors import FeedbackHubError
from feedbackhub.feedback import build_feedback_store, seed_sample_feedback
from feedbackhub.models import SignupStatus

logger = logging.getLogger("feedbackhub.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Feedback collection service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )

    subparsers.add_parser("init", help="Create the configured super user if it is missing")

    sample_parser = subparsers.add_parser("sample-data", help="Manage demo feedback records")
    sample_parser.add_argument("action", choices=("add", "clear"))

    signups_parser = subparsers.add_parser("signups", help="Review pending signup requests")
    signups_parser.add_argument("action", choices=("list", "approve", "reject"))
    signups_parser.add_argument("request_id", nargs="?", default=None)
    signups_parser.add_argument(
        "--approver",
        default=None,
        help="Email of the super user recording the decision (default: SUPER_USER_EMAIL)",
    )
    signups_parser.add_argument(
        "--status",
        choices=[status.value for status in SignupStatus],
        default=None,
        help="Only list requests in this state",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init", "sample-data", "signups"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    args = parser.parse_args(args_list)
    if args.command == "signups" and args.action != "list" and not args.request_id:
        parser.error(f"signups {args.action} requires a request id")
    return args


def _serve(*, settings: Settings, host: str, port: int) -> None:
    from feedbackhub.application import create_application
    import uvicorn

    logger.info("Starting feedback API on http://%s:%s (%s)", host, port, settings.environment)
    app = create_application(settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _initialise(settings: Settings) -> int:
    accounts = AccountManager(MongoConnector.from_settings(settings), settings)
    user = accounts.seed_super_user()
    if user is None:
        print("Super user is not configured. Set SUPER_USER_EMAIL and SUPER_USER_PASSWORD.")
        return 1
    print(f"Super user ready: {user.email}")
    return 0


def _sample_data(settings: Settings, action: str) -> int:
    if settings.is_production:
        print("Sample data commands are disabled in production.")
        return 1

    store = build_feedback_store(settings)
    if action == "add":
        created = seed_sample_feedback(store)
        print(f"Added {len(created)} sample feedback records to the {store.backend_name} store.")
    else:
        store.clear()
        print(f"Cleared all feedback from the {store.backend_name} store.")
    return 0


def _signups(settings: Settings, args: argparse.Namespace) -> int:
    accounts = AccountManager(MongoConnector.from_settings(settings), settings)

    if args.action == "list":
        requests = accounts.list_signup_requests(args.status)
        if not requests:
            print("No signup requests found.")
            return 0
        print(f"{len(requests)} signup request(s):")
        print(f"{'ID':<24}  {'Status':<8}  {'Email':<32}  Created")
        print("-" * 90)
        for request in requests:
            created = request.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
            print(f"{request.id:<24}  {request.status.value:<8}  {request.email:<32}  {created}")
        return 0

    approver_email = args.approver or settings.super_user_email
    approver = accounts.get_by_email(approver_email) if approver_email else None
    if approver is None or not approver.is_super_user:
        print("An existing super user must be given with --approver.")
        return 1

    try:
        if args.action == "approve":
            user = accounts.approve(args.request_id, approver.id)
            print(f"Approved signup request {args.request_id}; created user {user.email}.")
        else:
            request = accounts.reject(args.request_id, approver.id)
            print(f"Rejected signup request {request.id} for {request.email}.")
    except FeedbackHubError as exc:
        print(f"Failed to {args.action} signup request: {exc}")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings()

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port)
        return 0
    if args.command == "init":
        return _initialise(settings)
    if args.command == "sample-data":
        return _sample_data(settings, args.action)
    if args.command == "signups":
        return _signups(settings, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
