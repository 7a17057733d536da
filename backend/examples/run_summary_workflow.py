import argparse
import json
import logging
import mimetypes
import sys

import requests

from app.poller import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_UPLOAD_TIMEOUT_SECONDS,
    MeetingsClient,
    PipelineFailed,
    RateLimitExceeded,
    StatusPoller,
)

# --- Configuration ---
DEFAULT_BASE_URL = "http://localhost:5167"
DEFAULT_MAX_POLL_ATTEMPTS = 900    # 900 * 2s = 30 minutes

STATUS_MESSAGES = {
    "uploaded": "Preparing...",
    "transcribing": "Transcribing audio (this may take several minutes for large files)",
    "transcribed": "Transcription complete, preparing to analyze content",
    "summarizing": "Extracting insights and action items",
    "completed": "All done!",
}


def print_status(status, view):
    print(f"  Status: {status} - {STATUS_MESSAGES.get(status, '')}")


# --- Main Execution ---

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Upload a meeting recording and follow it through the pipeline.")
    parser.add_argument("audio_file", help="Path to the audio file (mp3, wav, m4a, ...).")
    parser.add_argument("--title", default=None, help="Meeting title (defaults to the file name)")
    parser.add_argument("--content-type", default=None, help="Override the detected media type")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help=f"Base URL of the API (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--interval", type=float, default=DEFAULT_POLL_INTERVAL_SECONDS, help=f"Polling interval in seconds (default: {DEFAULT_POLL_INTERVAL_SECONDS})")
    parser.add_argument("--attempts", type=int, default=DEFAULT_MAX_POLL_ATTEMPTS, help=f"Maximum polling attempts (default: {DEFAULT_MAX_POLL_ATTEMPTS})")
    parser.add_argument("--upload-timeout", type=float, default=DEFAULT_UPLOAD_TIMEOUT_SECONDS, help=f"Upload timeout in seconds (default: {DEFAULT_UPLOAD_TIMEOUT_SECONDS})")
    parser.add_argument("--verbose", action="store_true", help="Log every request")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    content_type = args.content_type or mimetypes.guess_type(args.audio_file)[0] or "audio/mpeg"
    client = MeetingsClient(args.base_url, upload_timeout=args.upload_timeout)

    # 1. Upload the recording
    try:
        meeting = client.upload(args.audio_file, content_type, title=args.title)
    except FileNotFoundError:
        print(f"Error: Audio file not found at '{args.audio_file}'")
        sys.exit(1)
    except requests.exceptions.Timeout:
        print(f"Error: Upload timed out after {args.upload_timeout}s. Try compressing the audio file.")
        sys.exit(1)
    except (requests.exceptions.RequestException, PipelineFailed) as e:
        print(f"Error during upload: {e}")
        sys.exit(1)
    print(f"Uploaded '{meeting['title']}'. Meeting ID: {meeting['id']}")

    # 2. Poll and trigger each stage
    poller = StatusPoller(client, interval=args.interval, max_attempts=args.attempts, on_status=print_status)
    try:
        result = poller.run(meeting["id"])
    except RateLimitExceeded as e:
        print(f"\nRate Limit Reached: {e.message}")
        print("What can you do?")
        print(e.guidance)
        sys.exit(2)
    except PipelineFailed as e:
        print(f"\nProcessing Failed: {e.message}")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"\nError while polling: {e}")
        sys.exit(1)

    # 3. Display Result
    print("\n--- Meeting Results ---")
    print(json.dumps({
        "summary": result["summary"],
        "action_items": result["action_items"],
        "duration_seconds": result["meeting"]["duration_seconds"],
    }, indent=2))
    print("-----------------------")
