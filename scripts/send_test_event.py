#!/usr/bin/env python3
"""
Dev helper: send a test Misskey webhook event to a running notehook relay.

Builds a Misskey-shaped envelope (a note, or an abuse report) and POST-s it
to /discord/{webhook_id}/{webhook_token}/misskey, which forwards it to the
real Discord webhook identified by the id and token.

Usage
-----
# Note event, webhook id/token read from DISCORD_WEBHOOK_URL
python scripts/send_test_event.py

# Abuse report instead of a note
python scripts/send_test_event.py --type abuseReport

# Note with an image attachment
python scripts/send_test_event.py --image https://example.test/cat.png

# Send the same note id twice to watch the second one being deduplicated
python scripts/send_test_event.py --note-id 9k2abc --repeat 2

# Print the envelope without sending it
python scripts/send_test_event.py --dry-run

Environment / .env
------------------
DISCORD_WEBHOOK_URL   https://discord.com/api/webhooks/<id>/<token>
                      Overridden by --webhook-url.
"""

import argparse
import json
import os
import re
import sys
import textwrap
import uuid
from datetime import datetime, timezone
from pathlib import Path

import httpx
from dotenv import load_dotenv

_WEBHOOK_URL_PATTERN = re.compile(r"/webhooks/(\d+)/([^/?#]+)")


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _sample_user(username: str, host: str | None = None) -> dict:
    return {
        "id": uuid.uuid4().hex[:10],
        "name": username.capitalize(),
        "username": username,
        "host": host,
        "avatarUrl": f"https://misskey.example/identicon/{username}",
    }


def _build_note_envelope(server: str, event_type: str, note_id: str, text: str, image: str | None) -> dict:
    """
    Build a note-type envelope.

    Misskey note webhook format:
      server — public base URL of the sending server
      type   — note / reply / mention / renote
      body   — {"note": {id, createdAt, text, user, files[]}}
    """
    files = []
    if image:
        files.append({"url": image, "type": "image/png"})

    return {
        "server": server,
        "type": event_type,
        "body": {
            "note": {
                "id": note_id,
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "text": text,
                "cw": None,
                "user": _sample_user("alice"),
                "files": files,
            }
        },
    }


def _build_abuse_report_envelope(server: str, comment: str) -> dict:
    """
    Build an abuseReport envelope.

    body — {targetUser, reporter, comment}
    """
    return {
        "server": server,
        "type": "abuseReport",
        "body": {
            "targetUserId": uuid.uuid4().hex[:10],
            "targetUser": _sample_user("spammer", host="remote.example"),
            "reporterId": uuid.uuid4().hex[:10],
            "reporter": _sample_user("alice"),
            "comment": comment,
        },
    }


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if response.is_success else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    # Locate project root (scripts/ lives one level below the root)
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_event.py",
        description=textwrap.dedent("""\
            Send a test Misskey webhook event to a notehook relay.

            Reads DISCORD_WEBHOOK_URL from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_event.py
              python scripts/send_test_event.py --type mention
              python scripts/send_test_event.py --type abuseReport
              python scripts/send_test_event.py --note-id 9k2abc --repeat 2
              python scripts/send_test_event.py --url http://localhost:8080
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Relay base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--webhook-url",
        default=os.getenv("DISCORD_WEBHOOK_URL", ""),
        metavar="URL",
        help="Discord webhook URL to relay to (default: DISCORD_WEBHOOK_URL env var)",
    )
    parser.add_argument(
        "--type",
        dest="event_type",
        default="note",
        choices=["note", "reply", "mention", "renote", "abuseReport"],
        help="Misskey event type to send (default: note)",
    )
    parser.add_argument(
        "--server",
        default="https://misskey.example",
        help="Value of the envelope's server field (default: https://misskey.example)",
    )
    parser.add_argument(
        "--note-id",
        default=None,
        help="Note id to send. A random id is used if omitted.",
    )
    parser.add_argument(
        "--text",
        default="Hello from notehook! :blobcat:",
        help="Note text, or the abuse report comment",
    )
    parser.add_argument(
        "--image",
        default=None,
        metavar="URL",
        help="Attach an image/png file with this URL to the note",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Send the same envelope this many times (default: 1)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the envelope JSON without sending it.",
    )

    args = parser.parse_args()

    if args.event_type == "abuseReport":
        envelope = _build_abuse_report_envelope(args.server, args.text)
    else:
        note_id = args.note_id or uuid.uuid4().hex[:10]
        envelope = _build_note_envelope(args.server, args.event_type, note_id, args.text, args.image)

    if args.dry_run:
        print("[DRY RUN] Envelope:")
        print(json.dumps(envelope, indent=2))
        return 0

    m = _WEBHOOK_URL_PATTERN.search(args.webhook_url)
    if not m:
        print(
            "ERROR: No Discord webhook URL found.\n"
            "Set DISCORD_WEBHOOK_URL in your environment or .env file, "
            "or pass --webhook-url.",
            file=sys.stderr,
        )
        return 1
    webhook_id, webhook_token = m.group(1), m.group(2)

    endpoint = f"{args.url.rstrip('/')}/discord/{webhook_id}/{webhook_token}/misskey"

    print(f"Endpoint  : {args.url.rstrip('/')}/discord/{webhook_id}/<token>/misskey")
    print(f"Type      : {args.event_type}")
    print(f"Server    : {args.server}")

    exit_code = 0
    for _ in range(max(args.repeat, 1)):
        try:
            response = httpx.post(endpoint, json=envelope, timeout=30)
        except httpx.ConnectError:
            print(
                f"\nERROR: Could not connect to {args.url}\n"
                "Is the relay running? Start it with:\n"
                "  cd backend && python -m notehook 127.0.0.1:8000",
                file=sys.stderr,
            )
            return 1
        except httpx.HTTPError as exc:
            print(f"\nERROR: {exc}", file=sys.stderr)
            return 1

        _print_response(response)
        if not response.is_success:
            exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
