#!/usr/bin/env python3
"""Admin client for a running raffle keeper.

Talks to the keeper's HTTP API.

Usage:
    python scripts/raffle_admin.py --url http://localhost:6080 status
    python scripts/raffle_admin.py --url http://localhost:6080 enter 0xabc... 10000000000000000
    python scripts/raffle_admin.py --url http://localhost:6080 draw
    python scripts/raffle_admin.py --url http://localhost:6080 fulfill 1
    python scripts/raffle_admin.py --url http://localhost:6080 reopen
"""

import argparse
import json
import os
import sys
from typing import Any, Dict, Optional

import requests


def call_api(method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Send a request and print the JSON body.

    Returns the decoded body for 2xx responses, None otherwise.
    """
    try:
        response = requests.request(method, url, json=payload, timeout=30)
    except requests.exceptions.RequestException as e:
        print(f"❌ Request to {url} failed: {e}")
        return None

    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text}

    if response.ok:
        print(json.dumps(body, indent=2))
        return body

    error = body.get("error") or body.get("detail") or response.reason
    print(f"❌ {response.status_code} {error}")
    print(json.dumps(body, indent=2))
    return None


def show_status(base_url: str) -> int:
    body = call_api("GET", f"{base_url}/api/raffle/status")
    return 0 if body is not None else 2


def enter(base_url: str, player: str, amount: int) -> int:
    print(f"🎟️  Entering {player} with {amount} wei")
    body = call_api("POST", f"{base_url}/api/raffle/enter", {"player": player, "amount": amount})
    return 0 if body is not None else 3


def draw(base_url: str) -> int:
    print("🎲 Requesting draw")
    body = call_api("POST", f"{base_url}/api/raffle/draw")
    return 0 if body is not None else 4


def fulfill(base_url: str, request_id: int) -> int:
    print(f"🔐 Fulfilling local request {request_id}")
    body = call_api("POST", f"{base_url}/api/oracle/fulfill/{request_id}")
    return 0 if body is not None else 5


def reopen(base_url: str) -> int:
    print("♻️  Reopening stalled draw")
    body = call_api("POST", f"{base_url}/api/raffle/reopen")
    return 0 if body is not None else 6


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Raffle keeper admin tool")
    parser.add_argument(
        "--url",
        default=os.environ.get("RAFFLE_API_URL", "http://localhost:6080"),
        help="Base URL of the raffle API (default: RAFFLE_API_URL or http://localhost:6080)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show raffle, operator and eligibility status")

    enter_parser = sub.add_parser("enter", help="Enter a player")
    enter_parser.add_argument("player", help="Player address (0x...)")
    enter_parser.add_argument("amount", type=int, help="Fee paid in wei")

    sub.add_parser("draw", help="Trigger a draw if the raffle is eligible")

    fulfill_parser = sub.add_parser("fulfill", help="Fulfill a pending local oracle request")
    fulfill_parser.add_argument("request_id", type=int)

    sub.add_parser("reopen", help="Reopen a draw the oracle never answered")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    base_url = args.url.rstrip("/")

    if args.command == "status":
        return show_status(base_url)
    if args.command == "enter":
        return enter(base_url, args.player, args.amount)
    if args.command == "draw":
        return draw(base_url)
    if args.command == "fulfill":
        return fulfill(base_url, args.request_id)
    if args.command == "reopen":
        return reopen(base_url)
    return 1


if __name__ == "__main__":
    sys.exit(main())
