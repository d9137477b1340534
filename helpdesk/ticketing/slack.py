import logging

import requests
from django.conf import settings

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = 'https://slack.com/api/chat.postMessage'


def is_configured():
    return bool(settings.SLACK_BOT_TOKEN)


def post_message(channel, text, thread_ts=None, blocks=None):
    """Post to a Slack channel. Returns the message ``ts`` (thread id).

    Raises ExternalServiceError when Slack rejects the call.
    """
    headers = {
        'Authorization': f'Bearer {settings.SLACK_BOT_TOKEN}',
        'Content-Type': 'application/json; charset=utf-8',
    }
    payload = {'channel': channel, 'text': text}
    if thread_ts:
        payload['thread_ts'] = thread_ts
    if blocks:
        payload['blocks'] = blocks

    try:
        resp = requests.post(SLACK_POST_MESSAGE_URL, headers=headers, json=payload, timeout=settings.SLACK_TIMEOUT)
    except requests.RequestException as exc:
        raise ExternalServiceError('Slack', str(exc))

    if resp.status_code != 200:
        raise ExternalServiceError('Slack', f"HTTP {resp.status_code}: {resp.text[:200]}")
    body = resp.json()
    if not body.get('ok'):
        raise ExternalServiceError('Slack', body.get('error', 'unknown error'))
    logger.debug("Slack message posted to %s", channel)
    return body.get('ts')


def mention(user_ids):
    return ' '.join(f'<@{uid}>' for uid in user_ids or [] if uid)
