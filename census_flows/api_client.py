"""
Census API Client - Low-level API wrapper for Census Bureau endpoints.

Author: Mir Md Tasnim Alam
"""

import time
import logging
import threading
from typing import Dict, List, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


# Census API geography names, keyed by the short names used throughout the package
GEOGRAPHY_CLAUSES = {
    "state": "state",
    "county": "county",
    "county subdivision": "county subdivision",
    "tract": "tract",
    "block group": "block group",
    "place": "place",
    "metropolitan statistical area": "metropolitan statistical area/micropolitan statistical area",
}

# First and last flow years available per geography
FLOW_YEARS = {
    "county": (2010, 2020),
    "county subdivision": (2010, 2020),
    "metropolitan statistical area": (2013, 2020),
}

# Population Estimates characteristics vintages
PEP_CHARACTERISTICS_YEARS = (2015, 2019)


class CensusAPIClient:
    """
    Low-level client for Census Bureau APIs.

    Handles:
    - Request construction and parameter encoding
    - Rate limiting and optional transport retries
    - Translating every failure into a RetrievalError
    """

    BASE_URL = "https://api.census.gov/data"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        rate_limit_delay: float = 0.5,
        max_retries: int = 0
    ):
        """
        Initialize the API client.

        Args:
            api_key: Census API key for higher rate limits.
            timeout: Per-request timeout in seconds.
            rate_limit_delay: Minimum seconds between requests.
            max_retries: Retries for 429/5xx responses (0 fails immediately).
        """
        self.api_key = api_key
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()

        self.session = requests.Session()
        retries = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            raise_on_status=False
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def get_acs5(
        self,
        variables: List[str],
        geography: str,
        state: Optional[str] = None,
        county: Optional[str] = None,
        year: int = 2019
    ) -> List[List]:
        """
        Fetch ACS 5-Year estimates.

        Args:
            variables: List of variable codes to fetch.
            geography: Geographic level (state, county, tract, block group,
                metropolitan statistical area).
            state: State FIPS code (required for sub-state geographies).
            county: County FIPS code (optional filter).
            year: Data year (end of the 5-year window).

        Returns:
            Raw API response as list of lists (first row is headers).
        """
        endpoint = f"{year}/acs/acs5"
        return self._make_request(endpoint, ["NAME"] + variables, geography, state, county)

    def get_flows(
        self,
        variables: List[str],
        geography: str,
        state: Optional[str] = None,
        county: Optional[str] = None,
        year: int = 2019
    ) -> List[List]:
        """
        Fetch ACS migration flows.

        Flows are published for 5-year windows ending in `year`, so 2013
        covers 2009-2013 and 2019 covers 2015-2019.
        """
        first, last = FLOW_YEARS.get(geography, (None, None))
        if first is None:
            raise RetrievalError(
                f"Migration flows are not published for geography '{geography}'",
                {"geography": geography, "year": year}
            )
        if not first <= year <= last:
            raise RetrievalError(
                f"Migration flows for {geography} are available {first}-{last}",
                {"geography": geography, "year": year}
            )
        if geography == "county subdivision" and not state:
            raise RetrievalError(
                "County subdivision flows require a state",
                {"geography": geography, "year": year}
            )

        endpoint = f"{year}/acs/flows"
        return self._make_request(endpoint, variables, geography, state, county)

    def get_pep_characteristics(
        self,
        variables: List[str],
        geography: str,
        state: Optional[str] = None,
        year: int = 2019
    ) -> List[List]:
        """
        Fetch Population Estimates Program age/sex characteristics.

        Each vintage publishes several reference dates; only the July 1
        estimate of `year` is requested.
        """
        first, last = PEP_CHARACTERISTICS_YEARS
        if not first <= year <= last:
            raise RetrievalError(
                f"Population characteristics are available {first}-{last}",
                {"geography": geography, "year": year}
            )
        endpoint = f"{year}/pep/charagegroups"
        predicates = {"DATE_CODE": str(year - 2007)}
        return self._make_request(endpoint, ["NAME"] + variables, geography, state, predicates=predicates)

    def _make_request(
        self,
        endpoint: str,
        variables: List[str],
        geography: str,
        state: Optional[str] = None,
        county: Optional[str] = None,
        predicates: Optional[Dict[str, str]] = None
    ) -> List[List]:
        """
        Make API request with rate limiting.

        Args:
            endpoint: API endpoint path.
            variables: Variables to fetch.
            geography: Geographic level.
            state: State FIPS filter.
            county: County FIPS filter.
            predicates: Extra variable filters (e.g. DATE_CODE).

        Returns:
            Parsed JSON response, or an empty list when no rows matched.

        Raises:
            RetrievalError: On network, HTTP, authentication or parse failures.
        """
        url = f"{self.BASE_URL}/{endpoint}"

        try:
            params = self._build_params(variables, geography, state, county)
            params.update(predicates or {})
        except ValueError as e:
            raise RetrievalError(str(e), {"endpoint": endpoint, "geography": geography}) from e

        public_params = {k: v for k, v in params.items() if k != "key"}
        context = {"endpoint": endpoint, **public_params}

        self._apply_rate_limit()
        logger.debug(f"Requesting: {url}?{urlencode(public_params)}")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {e}")
            raise RetrievalError(f"Census API unreachable: {e}", context) from e

        if response.status_code == 204:
            logger.info(f"No rows returned for {endpoint}")
            return []

        if response.status_code >= 400:
            if response.status_code == 400:
                logger.error(f"Bad request - check variable codes: {response.text}")
            elif response.status_code == 404:
                logger.error(f"Endpoint not found - check year/product: {endpoint}")
            raise RetrievalError(
                f"Census API returned HTTP {response.status_code}: {response.text[:200]}",
                context
            )

        try:
            payload = response.json()
        except ValueError as e:
            # An invalid key is reported as an HTML page with status 200
            logger.error(f"Non-JSON response from {endpoint}: {response.text[:200]}")
            message = "Invalid Census API key" if "Invalid Key" in response.text else (
                "Census API returned a non-JSON response"
            )
            raise RetrievalError(message, context) from e

        if not isinstance(payload, list) or (payload and not isinstance(payload[0], list)):
            raise RetrievalError("Unexpected Census API response shape", context)

        return payload

    def _build_params(
        self,
        variables: List[str],
        geography: str,
        state: Optional[str] = None,
        county: Optional[str] = None
    ) -> Dict:
        """Build API request parameters."""
        params = {
            "get": ",".join(variables),
        }

        if self.api_key:
            params["key"] = self.api_key

        params["for"] = self._build_for_clause(geography)

        # Add state filter for sub-state geographies
        if state and geography in ["county", "county subdivision", "tract", "block group", "place"]:
            params["in"] = f"state:{state}"
            if county and geography in ["county subdivision", "tract", "block group"]:
                params["in"] += f" county:{county}"

        return params

    def _build_for_clause(self, geography: str) -> str:
        """Build the 'for' clause for geographic filtering."""
        clause = GEOGRAPHY_CLAUSES.get(geography)
        if not clause:
            raise ValueError(f"Unsupported geography: {geography}")

        return f"{clause}:*"

    def _apply_rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        with self._rate_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self.rate_limit_delay:
                time.sleep(self.rate_limit_delay - elapsed)
            self._last_request_time = time.time()


class RetrievalError(Exception):
    """Raised when a Census service cannot return the requested data."""

    def __init__(self, message: str, params: Optional[Dict] = None):
        self.params = dict(params or {})
        details = ", ".join(f"{k}={v}" for k, v in self.params.items())
        super().__init__(f"{message} ({details})" if details else message)
