"""
Notifications — Slack webhook integration for pipeline events.

Notification failure never blocks the pipeline.
"""
import logging
import requests

from prospector.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')


def _areas_label(run) -> str:
    return ', '.join(a.get('name', '') for a in (run.areas or [])) or 'no areas'


def notify_run_complete(run):
    """Post run completion summary to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Prospecting Run Completed — {run.category}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Areas:* {_areas_label(run)}"},
                    {"type": "mrkdwn", "text": f"*Found:* {run.leads_found or 0}"},
                    {"type": "mrkdwn", "text": f"*New:* {run.leads_new or 0}"},
                    {"type": "mrkdwn", "text": f"*Ads verified:* {run.ads_verified or 0}"},
                    {"type": "mrkdwn", "text": f"*AI analyzed:* {run.ai_analyzed or 0}"},
                    {"type": "mrkdwn", "text": f"*Diagnosed:* {run.diagnosed or 0}"},
                ]
            },
        ]

        if run.summary:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"_{run.summary}_"}
            })

        if run.errors:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"{len(run.errors)} error(s) recorded"}]
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s completion notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send notification for run %s", run.id[:8], exc_info=True)


def notify_run_failed(run):
    """Post run failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        last_error = run.error_message or ''
        if not last_error and run.errors:
            last_error = run.errors[-1].get('message', '')

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Prospecting Run FAILED — {run.category}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Stage:* {run.current_stage or 'unknown'}"},
                    {"type": "mrkdwn", "text": f"*Areas:* {_areas_label(run)}"},
                ]
            },
        ]

        if last_error:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{last_error[:500]}```"}
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s failure notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send failure notification for run %s", run.id[:8], exc_info=True)
