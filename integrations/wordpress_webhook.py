"""
WordPress webhook integration for pushing autopilot changes to WordPress sites.
"""
import json
import logging

import requests

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 15  # seconds

APPLY_EVENT = 'autopilot.apply_change'
REVERT_EVENT = 'autopilot.revert_change'


class ChangePublishError(Exception):
    """The WordPress plugin did not accept the change."""


def send_webhook_to_wordpress(site, event_type: str, data: dict) -> dict:
    """
    Send a webhook event to a WordPress site's plugin endpoint.

    Args:
        site: Site model instance (must have .url)
        event_type: e.g. 'autopilot.apply_change'
        data: payload dict

    Returns:
        dict with 'success' (bool), 'status_code' (int|None), 'error' (str|None),
        and optionally 'response' (parsed JSON from WP).
    """
    url = f"{site.url.rstrip('/')}/wp-json/portal/v1/webhook"

    payload = {
        'event_type': event_type,
        'site_id': str(site.id),
        'data': data,
    }

    body = json.dumps(payload)

    headers = {
        'Content-Type': 'application/json',
        'X-Portal-Event': event_type,
    }

    try:
        resp = requests.post(url, data=body, headers=headers, timeout=WEBHOOK_TIMEOUT)
        resp_data = None
        try:
            resp_data = resp.json()
        except ValueError:
            pass

        if resp.status_code < 300:
            logger.info(
                "Webhook %s sent to %s — HTTP %s", event_type, url, resp.status_code
            )
            return {
                'success': True,
                'status_code': resp.status_code,
                'response': resp_data,
                'error': None,
            }
        else:
            logger.warning(
                "Webhook %s to %s failed — HTTP %s: %s",
                event_type, url, resp.status_code, resp.text[:500],
            )
            return {
                'success': False,
                'status_code': resp.status_code,
                'response': resp_data,
                'error': f"HTTP {resp.status_code}",
            }
    except requests.RequestException as exc:
        logger.error("Webhook %s to %s error: %s", event_type, url, exc)
        return {
            'success': False,
            'status_code': None,
            'response': None,
            'error': str(exc),
        }


def _change_payload(item, value):
    return {
        'queue_item_id': str(item.id),
        'page_id': item.page.wp_post_id if item.page_id else None,
        'page_url': item.page.url if item.page_id else None,
        'change_type': item.change_type,
        'field': item.field,
        'value': value,
    }


class WordPressChangePublisher:
    """Change publisher that pushes queue items through the plugin webhook."""

    def publish(self, site, item):
        result = send_webhook_to_wordpress(site, APPLY_EVENT, _change_payload(item, item.suggested_value))
        if not result['success']:
            raise ChangePublishError(result['error'])
        return result

    def revert(self, site, item):
        result = send_webhook_to_wordpress(site, REVERT_EVENT, _change_payload(item, item.old_value))
        if not result['success']:
            raise ChangePublishError(result['error'])
        return result
