"""
Geography Manager - TIGER/Line cartographic boundaries, centroids and FIPS utilities.

Author: Mir Md Tasnim Alam
"""

import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

import geopandas as gpd
import requests

from .api_client import RetrievalError

logger = logging.getLogger(__name__)


# State FIPS codes
FIPS_CODES = {
    "01": "Alabama", "02": "Alaska", "04": "Arizona", "05": "Arkansas",
    "06": "California", "08": "Colorado", "09": "Connecticut", "10": "Delaware",
    "11": "District of Columbia", "12": "Florida", "13": "Georgia", "15": "Hawaii",
    "16": "Idaho", "17": "Illinois", "18": "Indiana", "19": "Iowa",
    "20": "Kansas", "21": "Kentucky", "22": "Louisiana", "23": "Maine",
    "24": "Maryland", "25": "Massachusetts", "26": "Michigan", "27": "Minnesota",
    "28": "Mississippi", "29": "Missouri", "30": "Montana", "31": "Nebraska",
    "32": "Nevada", "33": "New Hampshire", "34": "New Jersey", "35": "New Mexico",
    "36": "New York", "37": "North Carolina", "38": "North Dakota", "39": "Ohio",
    "40": "Oklahoma", "41": "Oregon", "42": "Pennsylvania", "44": "Rhode Island",
    "45": "South Carolina", "46": "South Dakota", "47": "Tennessee", "48": "Texas",
    "49": "Utah", "50": "Vermont", "51": "Virginia", "53": "Washington",
    "54": "West Virginia", "55": "Wisconsin", "56": "Wyoming", "72": "Puerto Rico"
}

# State name to FIPS lookup
STATE_NAME_TO_FIPS = {v.lower(): k for k, v in FIPS_CODES.items()}

STATE_ABBREV_TO_FIPS = {
    "al": "01", "ak": "02", "az": "04", "ar": "05", "ca": "06",
    "co": "08", "ct": "09", "de": "10", "dc": "11", "fl": "12",
    "ga": "13", "hi": "15", "id": "16", "il": "17", "in": "18",
    "ia": "19", "ks": "20", "ky": "21", "la": "22", "me": "23",
    "md": "24", "ma": "25", "mi": "26", "mn": "27", "ms": "28",
    "mo": "29", "mt": "30", "ne": "31", "nv": "32", "nh": "33",
    "nj": "34", "nm": "35", "ny": "36", "nc": "37", "nd": "38",
    "oh": "39", "ok": "40", "or": "41", "pa": "42", "ri": "44",
    "sc": "45", "sd": "46", "tn": "47", "tx": "48", "ut": "49",
    "vt": "50", "va": "51", "wa": "53", "wv": "54", "wi": "55",
    "wy": "56", "pr": "72"
}

# Cartographic boundary file codes
BOUNDARY_FILE_CODES = {
    "state": "state",
    "county": "county",
    "county subdivision": "cousub",
    "tract": "tract",
    "block group": "bg",
    "place": "place",
    "metropolitan statistical area": "cbsa",
}

# Geographies published as one national file; the rest are per state
NATIONAL_BOUNDARIES = {"state", "county", "metropolitan statistical area"}

# GENZ cartographic files start with the 2013 vintage
BOUNDARY_MIN_YEAR = 2013

# CONUS Albers equal area, used for centroid computation
EQUAL_AREA_CRS = "EPSG:5070"


class GeographyManager:
    """
    Manager for geographic boundaries and FIPS code utilities.

    Handles:
    - Cartographic boundary file downloads
    - Centroid computation for flow endpoints
    - FIPS code lookups
    - Optional on-disk caching of boundaries
    """

    CB_BASE_URL = "https://www2.census.gov/geo/tiger/GENZ{year}/shp"

    def __init__(self, cache_dir: Optional[Path] = None, timeout: float = 60.0):
        """
        Initialize geography manager.

        Args:
            cache_dir: Directory for caching boundaries. None disables caching.
            timeout: Download timeout in seconds.
        """
        self.cache_dir = Path(cache_dir) if cache_dir else None
        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

    def get_tiger_boundaries(
        self,
        geography: str,
        year: int = 2019,
        resolution: str = "500k",
        state: Optional[str] = None
    ) -> gpd.GeoDataFrame:
        """
        Download and load cartographic boundaries.

        Args:
            geography: Geographic level (state, county, tract, etc.)
            year: Boundary vintage year
            resolution: Cartographic boundary resolution (500k, 5m, 20m)
            state: State FIPS for per-state geographies

        Returns:
            GeoDataFrame with boundaries and a standardized GEOID column
        """
        year = max(year, BOUNDARY_MIN_YEAR)
        cache_path = self._get_cache_path(geography, year, resolution, state)

        if cache_path is not None and cache_path.exists():
            logger.info(f"Loading cached boundaries: {cache_path}")
            return gpd.read_file(cache_path)

        url = self._build_tiger_url(geography, year, resolution, state)
        gdf = self._download_shapefile(url)
        if "GEOID" not in gdf.columns:
            gdf = gdf.rename(columns={tiger_geoid_column(geography): "GEOID"})

        if cache_path is not None:
            gdf.to_file(cache_path, driver="GPKG")
            logger.info(f"Cached boundaries: {cache_path}")

        return gdf

    def get_centroids(
        self,
        geography: str,
        year: int = 2019,
        state: Optional[str] = None
    ) -> gpd.GeoSeries:
        """
        Compute representative points for every geography in a boundary file.

        Centroids are computed in an equal-area projection and returned in
        EPSG:4326, indexed by GEOID.
        """
        boundaries = self.get_tiger_boundaries(geography, year=year, state=state)
        projected = boundaries.to_crs(EQUAL_AREA_CRS)
        points = projected.geometry.centroid.to_crs("EPSG:4326")

        logger.info(f"Computed {len(points)} {geography} centroids")
        return gpd.GeoSeries(points.values, index=boundaries["GEOID"].values, crs="EPSG:4326")

    def get_state_fips(self, state: str) -> str:
        """
        Get FIPS code for a state.

        Args:
            state: State name, abbreviation, or FIPS code.

        Returns:
            Two-digit FIPS code.
        """
        if state in FIPS_CODES:
            return state

        state_lower = state.lower()
        if state_lower in STATE_NAME_TO_FIPS:
            return STATE_NAME_TO_FIPS[state_lower]

        if state_lower in STATE_ABBREV_TO_FIPS:
            return STATE_ABBREV_TO_FIPS[state_lower]

        raise ValueError(f"Unknown state: {state}")

    def _build_tiger_url(
        self,
        geography: str,
        year: int,
        resolution: str,
        state: Optional[str] = None
    ) -> str:
        """Build URL for a cartographic boundary file."""
        geo_code = BOUNDARY_FILE_CODES.get(geography)
        if not geo_code:
            raise ValueError(f"Unsupported geography for TIGER: {geography}")

        if geography in NATIONAL_BOUNDARIES:
            filename = f"cb_{year}_us_{geo_code}_{resolution}.zip"
        else:
            if not state:
                raise ValueError(f"State required for {geography} boundaries")
            filename = f"cb_{year}_{state}_{geo_code}_{resolution}.zip"

        return f"{self.CB_BASE_URL.format(year=year)}/{filename}"

    def _get_cache_path(
        self,
        geography: str,
        year: int,
        resolution: str,
        state: Optional[str]
    ) -> Optional[Path]:
        """Get cache file path for boundaries, or None when caching is off."""
        if self.cache_dir is None:
            return None

        slug = geography.replace(" ", "_")
        if state:
            filename = f"{slug}_{year}_{resolution}_{state}.gpkg"
        else:
            filename = f"{slug}_{year}_{resolution}.gpkg"

        return self.cache_dir / filename

    def _download_shapefile(self, url: str) -> gpd.GeoDataFrame:
        """Download a zipped shapefile and load it."""
        logger.info(f"Downloading: {url}")

        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Boundary download failed: {e}")
            raise RetrievalError(f"Boundary download failed: {e}", {"url": url}) from e

        with tempfile.TemporaryDirectory() as tmp:
            zip_path = Path(tmp) / url.rsplit("/", 1)[-1]
            zip_path.write_bytes(response.content)

            try:
                with zipfile.ZipFile(zip_path) as zf:
                    shp_files = [f for f in zf.namelist() if f.endswith(".shp")]
            except zipfile.BadZipFile as e:
                raise RetrievalError("Boundary archive is not a valid zip file", {"url": url}) from e

            if not shp_files:
                raise RetrievalError("No shapefile found in archive", {"url": url})

            gdf = gpd.read_file(f"zip://{zip_path}!{shp_files[0]}")

        return gdf


def tiger_geoid_column(geography: str) -> str:
    """Get the boundary file GEOID column name for a geography level."""
    mapping = {
        "state": "STATEFP",
        "county": "GEOID",
        "county subdivision": "GEOID",
        "tract": "GEOID",
        "block group": "GEOID",
        "place": "GEOID",
        "metropolitan statistical area": "GEOID"
    }
    return mapping.get(geography, "GEOID")


def parse_geoid(geoid: str) -> dict:
    """
    Parse a GEOID into component FIPS codes.

    Args:
        geoid: Full GEOID string

    Returns:
        Dict with state, county, tract, block_group as applicable
    """
    result = {}

    if len(geoid) >= 2:
        result["state"] = geoid[:2]
    if len(geoid) >= 5:
        result["county"] = geoid[2:5]
    if len(geoid) >= 11:
        result["tract"] = geoid[5:11]
    if len(geoid) >= 12:
        result["block_group"] = geoid[11:12]

    return result

