"""
Zureo API Client

Handles communication with the Zureo SDK API including:
- Authentication (Basic login exchanged for a cached bearer token)
- Offset pagination under Zureo's rate limit (12 calls every 30 seconds)
- Bounded retry with exponential backoff on HTTP 429
"""

import base64
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Callable

import requests

from celia.services.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    RateLimitExhaustedError,
    TransientRateLimitError,
    ZureoAPIError,
)

logger = logging.getLogger(__name__)

LOGIN_PATH = '/sdk/v1/security/login'
PRODUCTS_PATH = '/sdk/v1/product/all'
IMAGES_PATH = '/sdk/v1/product/image'
BRANDS_PATH = '/sdk/v1/brand/all'

# Used when Zureo's valid_to is missing or unreadable
FALLBACK_TOKEN_TTL = timedelta(minutes=10)

# Refresh a little before Zureo says the token expires
TOKEN_EXPIRY_SKEW = timedelta(seconds=30)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ZureoSession:
    """Obtains and caches the bearer token used by every Zureo call"""

    def __init__(
        self,
        username: str,
        password: str,
        domain: str,
        company_id: str,
        base_url: str = "https://api.zureo.com",
        timeout: int = 30
    ):
        self.username = username
        self.password = password
        self.domain = domain
        self.company_id = company_id
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        self._token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    def check_credentials(self):
        """Raise ConfigurationError if any credential is missing"""
        missing = [
            name for name, value in (
                ('username', self.username),
                ('password', self.password),
                ('domain', self.domain),
                ('company_id', self.company_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing Zureo credentials: {', '.join(missing)}"
            )

    def _basic_credentials(self) -> str:
        """Zureo's Basic auth value is base64(username:password:domain)"""
        raw = f"{self.username}:{self.password}:{self.domain}"
        return base64.b64encode(raw.encode('utf-8')).decode('ascii')

    @staticmethod
    def _parse_expiry(valid_to: Any) -> Optional[datetime]:
        """Parse Zureo's valid_to timestamp; naive values are taken as UTC"""
        if not valid_to or not isinstance(valid_to, str):
            return None
        try:
            expiry = datetime.fromisoformat(valid_to.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry

    def has_valid_token(self) -> bool:
        return (
            self._token is not None
            and self._token_expiry is not None
            and _utc_now() < self._token_expiry - TOKEN_EXPIRY_SKEW
        )

    def get_valid_token(self) -> str:
        """
        Return a cached token while it is valid, otherwise log in again.

        Raises:
            ConfigurationError: credentials missing (before any request)
            AuthenticationError: login rejected or no token returned
        """
        self.check_credentials()

        if self.has_valid_token():
            return self._token

        logger.info("Logging in to Zureo")
        response = requests.post(
            f"{self.base_url}{LOGIN_PATH}",
            headers={
                'Content-Type': 'application/json',
                'Authorization': f"Basic {self._basic_credentials()}"
            },
            timeout=self.timeout
        )

        if not response.ok:
            logger.error(f"Zureo login failed: {response.status_code}")
            raise AuthenticationError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            raise AuthenticationError(response.status_code, response.text)

        token = data.get('token') if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError(response.status_code, "No token in login response")

        expiry = self._parse_expiry(data.get('valid_to'))
        if expiry is None:
            logger.warning(f"Unreadable valid_to {data.get('valid_to')!r}, using fallback TTL")
            expiry = _utc_now() + FALLBACK_TOKEN_TTL

        self._token = token
        self._token_expiry = expiry
        logger.info(f"Zureo token obtained, valid until {expiry.isoformat()}")
        return token

    def invalidate(self):
        """Forget the cached token so the next call logs in again"""
        self._token = None
        self._token_expiry = None


class ZureoClient:
    """Client for the Zureo SDK API"""

    def __init__(
        self,
        session: ZureoSession,
        page_size: int = 1000,
        timeout: int = 30,
        page_delay: float = 3,
        long_pause_every: int = 10,
        long_pause: float = 30,
        rate_limit_cooldown: float = 45,
        max_rate_limit_retries: int = 5,
        max_backoff: float = 300
    ):
        """
        Initialize the Zureo client.

        Args:
            session: Session that supplies bearer tokens
            page_size: Number of products requested per page
            timeout: Request timeout in seconds
            page_delay: Pause between pages
            long_pause_every: Take a long pause after this many pages (0 disables)
            long_pause: Length of the long pause
            rate_limit_cooldown: First wait after a 429, doubled on each retry
            max_rate_limit_retries: Retries of one page before giving up
            max_backoff: Upper bound for a single 429 wait
        """
        self.session = session
        self.base_url = session.base_url
        self.page_size = page_size
        self.timeout = timeout
        self.page_delay = page_delay
        self.long_pause_every = long_pause_every
        self.long_pause = long_pause
        self.rate_limit_cooldown = rate_limit_cooldown
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_backoff = max_backoff

    def _request(self, path: str, params: Dict[str, Any], page: int) -> requests.Response:
        """GET with a bearer token; a 401 triggers one re-login and retry"""
        url = f"{self.base_url}{path}"

        for attempt in range(2):
            token = self.session.get_valid_token()
            response = requests.get(
                url,
                params=params,
                headers={
                    'Content-Type': 'application/json',
                    'Authorization': f"Bearer {token}"
                },
                timeout=self.timeout
            )
            if response.status_code != 401:
                return response

            logger.warning(f"Zureo returned 401 on page {page}, refreshing token")
            self.session.invalidate()

        raise AuthenticationError(response.status_code, response.text)

    def _get_data(self, path: str, params: Dict[str, Any], page: int = 0) -> List[Dict[str, Any]]:
        """
        Fetch one endpoint and return its 'data' list.

        Raises:
            TransientRateLimitError: on 429
            ZureoAPIError: on any other non-2xx
            MalformedResponseError: body is not JSON or has no 'data' list
        """
        response = self._request(path, params, page)

        if response.status_code == 429:
            raise TransientRateLimitError(params.get('from', 0), response.text)

        if not response.ok:
            raise ZureoAPIError(page, response.status_code, response.text)

        try:
            body = response.json()
        except ValueError:
            raise MalformedResponseError(page, f"body is not JSON: {response.text[:200]}")

        if not isinstance(body, dict) or not isinstance(body.get('data'), list):
            raise MalformedResponseError(page, "missing 'data' list")

        return body['data']

    def _backoff_seconds(self, attempt: int) -> float:
        return min(self.rate_limit_cooldown * (2 ** attempt), self.max_backoff)

    def _get_with_retry(
        self,
        path: str,
        params: Dict[str, Any],
        page: int = 0,
        heartbeat: Callable[[], None] = None
    ) -> List[Dict[str, Any]]:
        """Call _get_data, waiting out 429s with the same params each time"""
        offset = params.get('from', 0)
        attempt = 0
        while True:
            try:
                return self._get_data(path, params, page)
            except TransientRateLimitError:
                if attempt >= self.max_rate_limit_retries:
                    logger.error(f"Rate limit retries exhausted on {path} page {page} (offset {offset})")
                    raise RateLimitExhaustedError(offset, attempt + 1)
                wait = self._backoff_seconds(attempt)
                attempt += 1
                logger.warning(
                    f"Rate limited on {path} page {page} (offset {offset}), "
                    f"retry {attempt}/{self.max_rate_limit_retries} in {wait}s"
                )
                if heartbeat:
                    heartbeat()
                time.sleep(wait)

    def _fetch_page(
        self,
        offset: int,
        page: int,
        extra_params: Dict[str, Any] = None,
        heartbeat: Callable[[], None] = None
    ) -> List[Dict[str, Any]]:
        """Fetch one page of products; a 429 never moves the offset"""
        params = {'emp': self.session.company_id}
        if extra_params:
            params.update(extra_params)
        params['from'] = offset
        params['qty'] = self.page_size
        return self._get_with_retry(PRODUCTS_PATH, params, page, heartbeat)

    def _pause_after_page(self, page: int, heartbeat: Callable[[], None] = None):
        if self.long_pause_every and page % self.long_pause_every == 0:
            logger.info(f"Taking a {self.long_pause}s pause after {page} pages")
            if heartbeat:
                heartbeat()
            time.sleep(self.long_pause)
        elif self.page_delay:
            time.sleep(self.page_delay)

    # ─────────────────────────────────────────────────────────────
    # Product Methods
    # ─────────────────────────────────────────────────────────────

    def fetch_all_products(
        self,
        since: Optional[datetime] = None,
        progress_callback: Callable[[int], None] = None,
        heartbeat: Callable[[], None] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch every product from Zureo, one page at a time.

        Args:
            since: Only products modified on or after this date
            progress_callback: Optional callback(fetched_count) called after each page
            heartbeat: Optional callback run before every rate-limit wait
                and long pause, so a caller can keep its run lease alive

        Returns:
            List of product dictionaries, in the order Zureo returned them
        """
        extra_params = {}
        if since is not None:
            extra_params['date'] = since.strftime('%Y-%m-%d')

        logger.info(
            f"Starting fetch of products from Zureo "
            f"(page size {self.page_size}, since {extra_params.get('date', 'forever')})"
        )

        all_products = []
        offset = 0
        page = 1

        while True:
            logger.debug(f"Fetching products page {page} (offset {offset})")
            items = self._fetch_page(offset, page, extra_params, heartbeat)
            all_products.extend(items)
            logger.info(f"Fetched {len(items)} products on page {page} (total: {len(all_products)})")

            if progress_callback:
                progress_callback(len(all_products))

            if len(items) < self.page_size:
                break

            offset += self.page_size
            self._pause_after_page(page, heartbeat)
            page += 1

        logger.info(f"Completed fetching {len(all_products)} products from Zureo in {page} page(s)")
        return all_products

    def fetch_product_images(self, product_id: int, variety_id: int = None) -> List[Dict[str, Any]]:
        """
        List the images Zureo holds for a product or one of its varieties.

        Each item has 'base64', 'filename' and 'descripcion'.
        """
        params = {'id': product_id}
        if variety_id is not None:
            params['var'] = variety_id
        return self._get_with_retry(IMAGES_PATH, params)

    def fetch_brands(self) -> List[Dict[str, Any]]:
        """Fetch all brands from Zureo"""
        return self._get_with_retry(BRANDS_PATH, {})

    # ─────────────────────────────────────────────────────────────
    # Health Check
    # ─────────────────────────────────────────────────────────────

    def test_connection(self) -> Dict[str, Any]:
        """
        Test the connection to the Zureo API.

        Returns:
            Dict with 'success' bool and 'message' or 'error'
        """
        try:
            self.session.get_valid_token()
            return {
                'success': True,
                'message': 'Successfully authenticated with Zureo API'
            }
        except (requests.RequestException, ConfigurationError, AuthenticationError) as e:
            return {
                'success': False,
                'error': str(e)
            }


def create_zureo_client(config) -> ZureoClient:
    """Build a client from the bot configuration"""
    session = ZureoSession(
        username=config.zureo_username,
        password=config.zureo_password,
        domain=config.zureo_domain,
        company_id=config.zureo_company_id,
        base_url=config.zureo_base_url,
        timeout=config.zureo_timeout
    )
    return ZureoClient(
        session,
        page_size=config.zureo_page_size,
        timeout=config.zureo_timeout,
        page_delay=config.zureo_page_delay,
        long_pause_every=config.zureo_long_pause_every,
        long_pause=config.zureo_long_pause,
        rate_limit_cooldown=config.zureo_rate_limit_cooldown,
        max_rate_limit_retries=config.zureo_max_rate_limit_retries,
        max_backoff=config.zureo_max_backoff
    )
