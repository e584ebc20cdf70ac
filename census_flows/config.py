"""
Pipeline Configuration - Credentials and transport settings.

Author: Mir Md Tasnim Alam
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit configuration passed to the pipeline and renderers.

    Attributes:
        census_api_key: Census API key (https://api.census.gov/data/key_signup.html).
        mapbox_token: Mapbox access token used for arc map basemaps.
        timeout: Per-request timeout in seconds.
        rate_limit_delay: Minimum seconds between Census API requests.
        max_retries: Transport-level retries for 429/5xx responses.
        parallel_workers: Workers for independent flow snapshot fetches.
        cache_dir: Directory for boundary files. None disables caching.
    """

    census_api_key: Optional[str] = None
    mapbox_token: Optional[str] = None
    timeout: float = 30.0
    rate_limit_delay: float = 0.5
    max_retries: int = 0
    parallel_workers: int = 2
    cache_dir: Optional[Path] = None

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """
        Build configuration from environment variables.

        Reads CENSUS_API_KEY, MAPBOX_TOKEN and CENSUS_FLOWS_CACHE_DIR.
        Keyword arguments override anything read from the environment.
        """
        cache_dir = os.environ.get("CENSUS_FLOWS_CACHE_DIR")
        values = {
            "census_api_key": os.environ.get("CENSUS_API_KEY"),
            "mapbox_token": os.environ.get("MAPBOX_TOKEN"),
            "cache_dir": Path(cache_dir) if cache_dir else None,
        }
        values.update(overrides)

        config = cls(**values)
        if not config.census_api_key:
            logger.warning("No Census API key configured. Requests may be rate-limited.")
        return config
