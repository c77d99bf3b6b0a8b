# lambdas/ingest_transcripts/notifier.py
from typing import Dict, List, Optional

import requests

from .models import ClassificationResult, KeywordMatch, RunSummary, UserInterests


def select_user_matches(user: UserInterests, results: List[ClassificationResult]) -> List[KeywordMatch]:
    """Returns the matches whose keyword is one of the user's interests."""
    interests = {i.casefold() for i in user.interests}
    return [
        match
        for result in results
        for match in result.matches
        if match.keyword.casefold() in interests
    ]


def format_notification(email: str, matches: List[KeywordMatch]) -> str:
    """Builds the text of the single message a user receives for a run."""
    lines = [f"New call highlights for {email}:"]
    for match in matches:
        lines.append(f"• [{match.keyword}] {match.summary} {match.link}")
    return "\n".join(lines)


def send_webhook_message(session: requests.Session, webhook_url: str, text: str, timeout: float) -> None:
    """Posts a Slack-style {"text": ...} payload. Raises on network errors and non-2xx responses."""
    response = session.post(webhook_url, json={"text": text}, timeout=timeout)
    response.raise_for_status()


def notify_users(session: requests.Session, users: List[UserInterests], results: List[ClassificationResult],
                 default_webhook_url: Optional[str], timeout: float, summary: RunSummary) -> Dict[str, bool]:
    """
    Sends each interested user one message with their matches.
    A failed send is logged and does not stop the remaining users.

    Returns:
        A dict mapping each notified email to whether the send succeeded.
    """
    outcomes: Dict[str, bool] = {}
    for user in users:
        matches = select_user_matches(user, results)
        if not matches:
            continue

        webhook_url = user.webhook_url or default_webhook_url
        if not webhook_url:
            print(f"[notify] ℹ️ No webhook configured for {user.email}. Skipping notification.")
            continue

        try:
            send_webhook_message(session, webhook_url, format_notification(user.email, matches), timeout)
        except requests.exceptions.RequestException as e:
            print(f"[notify] ⚠️ Could not notify {user.email}: {e}")
            summary.notification_failures += 1
            outcomes[user.email] = False
            continue

        print(f"[notify] ✅ Sent {len(matches)} highlight(s) to {user.email}.")
        summary.notifications_sent += 1
        outcomes[user.email] = True
    return outcomes
