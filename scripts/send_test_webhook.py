"""Post a signed post-call webhook to a running API, for local testing.

    python scripts/send_test_webhook.py <submission_id> [--url http://localhost:8000]
"""
import argparse
import json
import os
import uuid

import httpx

from takehome.services.webhook_verifier import POST_CALL_TRANSCRIPTION, SIGNATURE_HEADER, sign


def build_payload(submission_id: str, conversation_id: str) -> dict:
    return {
        "type": POST_CALL_TRANSCRIPTION,
        "data": {
            "conversation_id": conversation_id,
            "conversation_initiation_client_data": {"dynamic_variables": {"submissionId": submission_id}},
            "transcript": [
                {"role": "agent", "message": "Why did you pick SQLite for storage?", "time_in_call_secs": 1},
                {"role": "user", "message": "It kept setup trivial for a single-node service.", "time_in_call_secs": 9},
            ],
            "analysis": {"transcript_summary": "The candidate explained their storage choice."},
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("submission_id")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--conversation-id", default=None)
    args = parser.parse_args()

    secret = os.getenv("ELEVENLABS_WEBHOOK_SECRET")
    if not secret:
        raise SystemExit("ELEVENLABS_WEBHOOK_SECRET is not set")

    payload = build_payload(args.submission_id, args.conversation_id or f"conv_{uuid.uuid4().hex[:12]}")
    body = json.dumps(payload).encode()
    response = httpx.post(
        f"{args.url.rstrip('/')}/api/v1/webhooks/elevenlabs",
        content=body,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: sign(body, secret)},
        timeout=30.0,
    )
    print(response.status_code, response.text)


if __name__ == "__main__":
    main()
