"""
Google Search Console Integration

Uses OAuth 2.0 to fetch keyword positions for the ranking tracker.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional

import requests
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

# Google OAuth endpoints
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GSC_API_BASE = 'https://searchconsole.googleapis.com/v1'


class GSCError(Exception):
    """Search Console request failed or timed out."""


def refresh_access_token(refresh_token: str, timeout: float = None) -> Dict[str, Any]:
    """
    Refresh an expired access token.
    """
    data = {
        'client_id': settings.GSC_CLIENT_ID,
        'client_secret': settings.GSC_CLIENT_SECRET,
        'refresh_token': refresh_token,
        'grant_type': 'refresh_token',
    }

    try:
        response = requests.post(GOOGLE_TOKEN_URL, data=data,
                                 timeout=timeout or settings.OPTIMIZER_RANK_FETCH_TIMEOUT)
    except requests.RequestException as e:
        raise GSCError(f"Token refresh failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"Token refresh failed: {response.text}")
        raise GSCError(f"Token refresh failed: HTTP {response.status_code}")

    return response.json()


def get_valid_access_token(site, timeout: float = None) -> Optional[str]:
    """Get a valid access token, refreshing if needed."""
    if site.gsc_access_token and site.gsc_token_expires_at and site.gsc_token_expires_at > timezone.now():
        return site.gsc_access_token

    if not site.gsc_refresh_token:
        return site.gsc_access_token

    tokens = refresh_access_token(site.gsc_refresh_token, timeout=timeout)
    site.gsc_access_token = tokens.get('access_token')
    site.gsc_token_expires_at = timezone.now() + timedelta(seconds=tokens.get('expires_in', 3600))
    site.save(update_fields=['gsc_access_token', 'gsc_token_expires_at', 'updated_at'])

    return site.gsc_access_token


def fetch_search_analytics(
    access_token: str,
    site_url: str,
    start_date: str = None,
    end_date: str = None,
    dimensions: List[str] = None,
    row_limit: int = 1000,
    timeout: float = None,
) -> List[Dict[str, Any]]:
    """
    Fetch search analytics data from GSC.

    Args:
        access_token: OAuth access token
        site_url: The site URL (e.g., 'https://example.com/')
        start_date: Start date (YYYY-MM-DD), defaults to 28 days ago
        end_date: End date (YYYY-MM-DD), defaults to today
        dimensions: List of dimensions ['query', 'page', 'country', 'device', 'date']
        row_limit: Max rows to return (default 1000, max 25000)
        timeout: Per-request timeout in seconds

    Returns:
        List of rows with keys, clicks, impressions, ctr, position

    Raises:
        GSCError on timeout, transport failure or a non-200 response.
    """
    if not start_date:
        start_date = (datetime.now() - timedelta(days=28)).strftime('%Y-%m-%d')
    if not end_date:
        end_date = datetime.now().strftime('%Y-%m-%d')
    if not dimensions:
        dimensions = ['query']

    headers = {
        'Authorization': f'Bearer {access_token}',
        'Content-Type': 'application/json',
    }

    # URL encode the site URL for the API path
    encoded_site = requests.utils.quote(site_url, safe='')
    url = f'{GSC_API_BASE}/sites/{encoded_site}/searchAnalytics/query'

    payload = {
        'startDate': start_date,
        'endDate': end_date,
        'dimensions': dimensions,
        'rowLimit': row_limit,
        'startRow': 0,
    }

    try:
        response = requests.post(url, headers=headers, json=payload,
                                 timeout=timeout or settings.OPTIMIZER_RANK_FETCH_TIMEOUT)
    except requests.Timeout as e:
        raise GSCError(f"Search analytics request timed out for {site_url}") from e
    except requests.RequestException as e:
        raise GSCError(f"Search analytics request failed for {site_url}: {e}") from e

    if response.status_code != 200:
        logger.warning("GSC search analytics for %s failed — HTTP %s: %s",
                       site_url, response.status_code, response.text[:500])
        raise GSCError(f"Search analytics HTTP {response.status_code}")

    rows = response.json().get('rows', [])

    # Transform to flat dict format
    results = []
    for row in rows:
        keys = row.get('keys', [])
        result = {
            'clicks': row.get('clicks', 0),
            'impressions': row.get('impressions', 0),
            'ctr': row.get('ctr', 0),
            'position': row.get('position', 0),
        }
        # Map keys to dimension names
        for i, dim in enumerate(dimensions):
            if i < len(keys):
                result[dim] = keys[i]
        results.append(result)

    return results


class SearchConsoleRankFetcher:
    """Rank fetcher backed by the Search Console query report."""

    def __init__(self, timeout: float = None):
        self.timeout = timeout or settings.OPTIMIZER_RANK_FETCH_TIMEOUT

    def is_connected(self, site) -> bool:
        return site.gsc_connected

    def fetch_positions(self, site, keywords) -> Dict[str, Dict[str, Any]]:
        """
        Returns {keyword: {'position', 'clicks', 'impressions'}} for the
        requested keywords that had impressions in the last 28 days.
        """
        if not self.is_connected(site):
            return {}

        access_token = get_valid_access_token(site, timeout=self.timeout)
        if not access_token:
            raise GSCError(f"No usable Search Console token for site {site.id}")

        rows = fetch_search_analytics(
            access_token=access_token,
            site_url=site.gsc_site_url,
            dimensions=['query'],
            row_limit=5000,
            timeout=self.timeout,
        )
        wanted = {k.lower(): k for k in keywords}
        positions = {}
        for row in rows:
            keyword = wanted.get((row.get('query') or '').lower())
            if keyword is None:
                continue
            positions[keyword] = {
                'position': round(float(row['position']), 1),
                'clicks': int(row['clicks']),
                'impressions': int(row['impressions']),
            }
        return positions
