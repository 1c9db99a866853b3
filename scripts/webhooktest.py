import argparse
import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path

import requests


# Load BASE_URL from .env
def load_env_var(key: str, default: str = "") -> str:
    """Load environment variable from .env file or environment"""
    # First check environment
    if key in os.environ:
        return os.environ[key]

    # Then check .env file
    env_file = Path(__file__).parent.parent / ".env"
    if env_file.exists():
        content = env_file.read_text()
        match = re.search(rf"^{re.escape(key)}=(.+)$", content, flags=re.M)
        if match:
            return match.group(1).strip()

    return default


SAMPLE_TRANSCRIPT = [
    {"role": "system", "content": "You are a friendly intake nurse."},
    {"role": "assistant", "content": "Hi, I'm the intake assistant. What brings you in today?"},
    {"role": "user", "content": "Hi, my name is Jane. I've had a pounding headache for three days."},
    {"role": "assistant", "content": "I'm sorry to hear that. Any other symptoms, like fever or nausea?"},
    {"role": "user", "content": "Some nausea in the mornings. I take lisinopril for blood pressure."},
    {"role": "assistant", "content": "Thank you. Any allergies to medications?"},
    {"role": "user", "content": "Penicillin gives me hives."},
]


def build_event(event_type: str, conversation_id: str, *, inline_transcript: bool) -> dict:
    now = datetime.now(timezone.utc).isoformat()
    event = {
        "conversation_id": conversation_id,
        "event_type": event_type,
        "message_type": "application" if event_type.startswith("application.") else "system",
        "timestamp": now,
        "properties": {},
    }
    if event_type == "system.shutdown":
        event["properties"] = {"shutdown_reason": "participant_left_timeout"}
    elif event_type == "application.transcription_ready" and inline_transcript:
        event["properties"] = {"transcript": SAMPLE_TRANSCRIPT}
    elif event_type == "application.perception_analysis":
        event["properties"] = {
            "analysis": "The participant appeared tired and held a hand to their forehead several times."
        }
    return event


def main() -> None:
    parser = argparse.ArgumentParser(description="Send sample Tavus webhook events to a running service.")
    parser.add_argument("conversation_id", help="Conversation id already linked to a demo session")
    parser.add_argument(
        "--events",
        default="conversation.started,system.shutdown,application.transcription_ready",
        help="Comma-separated event types, sent in order",
    )
    parser.add_argument("--no-inline-transcript", action="store_true", help="Force the service to fetch the transcript")
    args = parser.parse_args()

    base_url = load_env_var("BASE_URL", "http://localhost:8000")
    webhook_url = f"{base_url.rstrip('/')}/webhooks/tavus"
    print(f"📤 Sending Tavus webhooks to: {webhook_url}")
    print()

    for event_type in [e.strip() for e in args.events.split(",") if e.strip()]:
        payload = build_event(event_type, args.conversation_id, inline_transcript=not args.no_inline_transcript)
        print(f"➡️  {event_type}")
        try:
            # The transcription event runs the whole report inline; allow for the LLM call.
            response = requests.post(webhook_url, json=payload, timeout=120)
        except requests.exceptions.Timeout:
            print("   ⏱️  Request timed out after 120 seconds")
            continue
        except requests.exceptions.ConnectionError as e:
            print(f"   🔌 Connection error: {e}")
            print(f"   Make sure your API is running at {base_url}")
            return
        except requests.exceptions.RequestException as e:
            print(f"   ❌ Error sending webhook: {e}")
            continue

        print(f"   📥 Status: {response.status_code}")
        try:
            body = response.json()
            print(f"   📄 {json.dumps(body)}")
            if body.get("error"):
                print("   ⚠️  Service reported a processing error; check the API logs")
        except json.JSONDecodeError:
            print(f"   📄 (non-JSON) {response.text[:300]}")

    print("\n💡 Next steps:")
    print("   1. Check API logs: docker-compose logs -f api")
    print(f"   2. Inspect the session: {base_url}/debug/sessions/SESSION_ID (needs ALLOW_DEBUG_ENDPOINTS=true)")


if __name__ == "__main__":
    main()
