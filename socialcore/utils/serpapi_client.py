"""
SerpAPI search client with retry logic and error handling.
"""

import random
import time
from typing import Any, Dict, List, Optional

import requests

from ..models.core import SearchResult
from .config import SerpApiConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Query parameter name per engine; everything else uses 'q'
QUERY_KEYS = {
    'youtube': 'search_query',
    'ebay': '_nkw',
    'walmart': 'query',
    'yelp': 'find_desc',
}

# Where each engine puts its result list in the JSON payload
RESULT_KEYS = {
    'google': ('news_results', 'top_stories', 'organic_results'),
    'google_news': ('news_results', ),
    'youtube': ('video_results', ),
    'google_scholar': ('organic_results', ),
    'bing_news': ('organic_results', ),
}


class SerpApiError(Exception):
    """Custom exception for SerpAPI errors."""
    pass


class SerpApiClient:
    """Search collaborator backed by SerpAPI's JSON endpoint."""

    def __init__(self, config: SerpApiConfig, session: Optional[requests.Session] = None):
        """
        Initialize SerpAPI client.

        Args:
            config: SerpApiConfig instance with connection parameters
            session: requests session to reuse (optional)
        """
        self.config = config
        self.session = session or requests.Session()

        logger.info(f'Initialized SerpAPI client for endpoint: {config.base_url}')

    @staticmethod
    def query_key(engine: str, params: Optional[Dict[str, Any]] = None) -> str:
        if params and isinstance(params.get('query_key'), str) and params['query_key']:
            return params['query_key']
        return QUERY_KEYS.get(engine, 'q')

    @staticmethod
    def extract_items(engine: str, raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Pull the result dicts out of an engine-specific payload.

        Google News groups related coverage under ``stories``; those are flattened
        so every story is a candidate of its own.
        """
        keys = RESULT_KEYS.get(engine)
        if keys is None:
            keys = tuple(k for k, v in raw.items() if k.endswith('_results') and isinstance(v, list))

        items = []
        for key in keys:
            for entry in raw.get(key) or []:
                if not isinstance(entry, dict):
                    continue
                stories = entry.get('stories')
                if isinstance(stories, list) and not entry.get('link'):
                    items.extend(s for s in stories if isinstance(s, dict))
                else:
                    items.append(entry)
        return items

    def run(self, engine: str, query: str, params: Optional[Dict[str, Any]] = None) -> SearchResult:
        """
        Run one search.

        Args:
            engine: SerpAPI engine name (google, google_news, youtube, ...)
            query: Search query
            params: Extra engine parameters; 'query_key' overrides the query parameter name

        Returns:
            SearchResult with extracted items and the raw payload

        Raises:
            SerpApiError: If the API key is missing or all retry attempts fail
        """
        if not self.config.api_key:
            raise SerpApiError('Missing SERPAPI_KEY')

        request_params = {'engine': engine, 'api_key': self.config.api_key}
        if engine == 'google':
            request_params['num'] = self.config.num_results
        for key, value in (params or {}).items():
            if key != 'query_key' and value is not None:
                request_params[key] = value
        request_params[self.query_key(engine, params)] = query

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'SerpAPI request attempt {attempt + 1}/{self.config.retry_attempts} engine={engine}')

                response = self.session.get(self.config.base_url,
                                            params=request_params,
                                            timeout=self.config.timeout_seconds)
                if response.status_code >= 500 or response.status_code == 429:
                    raise requests.HTTPError(f'SerpAPI error {response.status_code}: {response.text[:200]}')
                if response.status_code >= 400:
                    # Client errors do not improve on retry
                    raise SerpApiError(f'SerpAPI error {response.status_code}: {response.text[:200]}')

                raw = response.json()
                if raw.get('error'):
                    raise SerpApiError(f"SerpAPI error: {raw['error']}")

                items = self.extract_items(engine, raw)
                logger.debug(f'SerpAPI returned {len(items)} items for engine={engine}')
                return SearchResult(items=items, raw=raw)

            except (requests.RequestException, ValueError) as e:
                logger.warning(f'SerpAPI attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise SerpApiError(f'SerpAPI failed after {self.config.retry_attempts} attempts: {e}')

        raise SerpApiError(f'SerpAPI failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Check that an API key is configured and the account endpoint answers.

        Returns:
            True if service is healthy, False otherwise
        """
        if not self.config.api_key:
            return False
        try:
            response = self.session.get('https://serpapi.com/account.json',
                                        params={'api_key': self.config.api_key},
                                        timeout=self.config.timeout_seconds)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f'SerpAPI health check failed: {e}')
            return False
