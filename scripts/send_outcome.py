#!/usr/bin/env python3
"""
Post a call outcome event to a running server, e.g. to replay a provider callback.

    python scripts/send_outcome.py 42 call.completed --duration 185 \
        --transcript "..." --outcome APPOINTMENT_SET --appointment-time 2026-01-10T15:00:00Z
"""

import argparse
import json
import sys
from datetime import datetime, timezone

import httpx


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Send an outcome event to /webhooks/outcome")
    parser.add_argument("conversation_id", type=int)
    parser.add_argument("event_type", help="call.started | call.connected | call.completed | call.failed")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL (default: http://localhost:8000)")
    parser.add_argument("--call-id", default="manual")
    parser.add_argument("--duration", type=float)
    parser.add_argument("--transcript")
    parser.add_argument("--outcome", help="Outcome type, e.g. APPOINTMENT_SET")
    parser.add_argument("--appointment-time")
    parser.add_argument("--callback-time")
    parser.add_argument("--notes")
    parser.add_argument("--failure-reason")
    args = parser.parse_args(argv)

    body = {
        "eventType": args.event_type,
        "callId": args.call_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if args.duration is not None:
        body["duration"] = args.duration
    if args.transcript is not None:
        body["transcript"] = args.transcript
    if args.outcome:
        body["outcome"] = {
            "type": args.outcome,
            "appointmentTime": args.appointment_time,
            "callbackTime": args.callback_time,
            "notes": args.notes,
        }
    if args.failure_reason:
        body["failureReason"] = args.failure_reason

    resp = httpx.post(
        f"{args.base_url.rstrip('/')}/webhooks/outcome",
        params={"conversationId": args.conversation_id},
        json=body,
        timeout=10.0,
    )
    print(resp.status_code, json.dumps(resp.json(), ensure_ascii=False))
    return 0 if resp.status_code == 200 else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
