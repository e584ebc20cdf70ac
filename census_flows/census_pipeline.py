"""
Census Flows Pipeline - Main Pipeline Class

Fetches ACS estimates, ACS migration flows and population characteristics,
attaches boundary geometry, and hands finished tables to the renderers.

Author: Mir Md Tasnim Alam
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd
import geopandas as gpd

from .api_client import CensusAPIClient
from .config import PipelineConfig
from .geography import GeographyManager, parse_geoid
from .renderers import DataRenderer, RenderConfig
from .transformers import DataTransformer

logger = logging.getLogger(__name__)


# API geography columns concatenated (in order) to form a GEOID
GEOID_COMPONENTS = {
    "state": ["state"],
    "county": ["state", "county"],
    "county subdivision": ["state", "county", "county subdivision"],
    "tract": ["state", "county", "tract"],
    "block group": ["state", "county", "tract", "block group"],
    "place": ["state", "place"],
    "metropolitan statistical area": ["metropolitan statistical area/micropolitan statistical area"],
}

OBSERVATION_COLUMNS = ["GEOID", "NAME", "variable", "estimate", "moe"]
FLOW_COLUMNS = ["GEOID1", "GEOID2", "FULL1_NAME", "FULL2_NAME", "variable", "estimate", "moe", "year"]
BREAKDOWN_COLUMNS = ["GEOID", "NAME", "sex", "age_group", "estimate", "year"]


class CensusPipeline:
    """
    Main pipeline class for fetching, reshaping, and rendering Census data.

    Supports:
    - American Community Survey (ACS) 5-year estimates
    - ACS county, county subdivision and metro area migration flows
    - Population Estimates Program age/sex characteristics
    - Cartographic boundary and centroid geometry

    Example:
        >>> pipeline = CensusPipeline(PipelineConfig(census_api_key="your_key"))
        >>> flows = pipeline.fetch_flows(
        ...     geography="metropolitan statistical area",
        ...     year=2019,
        ...     geometry=True
        ... )
    """

    # Census variable groups for common analyses
    DEMOGRAPHIC_VARS = {
        "B01003_001": "total_population",
        "B01002_001": "median_age",
    }

    ECONOMIC_VARS = {
        "B19013_001": "median_household_income",
        "B19301_001": "per_capita_income",
    }

    FLOW_VARIABLES = [
        "GEOID1", "GEOID2", "FULL1_NAME", "FULL2_NAME",
        "MOVEDIN", "MOVEDIN_M", "MOVEDOUT", "MOVEDOUT_M"
    ]

    FLOW_DIRECTIONS = ["MOVEDIN", "MOVEDOUT"]

    SEX_LABELS = {1: "Male", 2: "Female"}

    AGE_GROUP_LABELS = {
        **{i: f"Age {5 * (i - 1)} to {5 * i - 1} years" for i in range(1, 18)},
        18: "Age 85 years and older",
    }

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        api_client: Optional[CensusAPIClient] = None,
        geography: Optional[GeographyManager] = None
    ):
        """
        Initialize the pipeline.

        Args:
            config: Credentials and transport settings. If None, read from
                the environment (CENSUS_API_KEY, MAPBOX_TOKEN).
            api_client: Client to use instead of building one from config.
            geography: Geography manager to use instead of building one.
        """
        self.config = config or PipelineConfig.from_env()

        self.api_client = api_client or CensusAPIClient(
            api_key=self.config.census_api_key,
            timeout=self.config.timeout,
            rate_limit_delay=self.config.rate_limit_delay,
            max_retries=self.config.max_retries
        )
        self.geography = geography or GeographyManager(
            cache_dir=self.config.cache_dir,
            timeout=self.config.timeout
        )
        self.transformer = DataTransformer()
        self.renderer = DataRenderer(mapbox_token=self.config.mapbox_token)

        logger.info(f"Census Flows pipeline initialized. Boundary cache: {self.config.cache_dir}")

    def fetch_acs5(
        self,
        variables: Union[List[str], Dict[str, str]],
        geography: str,
        state: Optional[str] = None,
        county: Optional[str] = None,
        year: int = 2019,
        geometry: bool = False,
        output: str = "tidy"
    ) -> Union[pd.DataFrame, gpd.GeoDataFrame]:
        """
        Fetch American Community Survey 5-Year estimates.

        Args:
            variables: List of variable codes or dict mapping codes to names.
                Codes may carry the trailing "E" or not.
            geography: Geographic level (state, county, tract, block group,
                metropolitan statistical area).
            state: State FIPS code, name or abbreviation.
            county: County FIPS code (optional filter).
            year: Data year (end of the 5-year window).
            geometry: Attach cartographic boundary polygons.
            output: "tidy" (one row per geography and variable) or "wide".

        Returns:
            DataFrame, or GeoDataFrame when geometry is requested.

        Example:
            >>> income = pipeline.fetch_acs5(
            ...     variables={"B19013_001": "median_income"},
            ...     geography="tract",
            ...     state="TX",
            ...     geometry=True
            ... )
        """
        if output not in ("tidy", "wide"):
            raise ValueError(f"Unknown output format: {output}")

        logger.info(f"Fetching ACS 5-Year {year} data at {geography} level")

        state = self.geography.get_state_fips(state) if state else None

        # Normalize variables to dict of base code -> name
        if isinstance(variables, dict):
            var_dict = {self._base_code(code): name for code, name in variables.items()}
        else:
            var_dict = {self._base_code(code): self._base_code(code) for code in variables}

        request_vars = []
        for code in var_dict:
            request_vars += [f"{code}E", f"{code}M"]

        raw_data = self.api_client.get_acs5(
            variables=request_vars,
            geography=geography,
            state=state,
            county=county,
            year=year
        )

        df = self._parse_api_response(raw_data, numeric=request_vars)
        if df.empty:
            columns = OBSERVATION_COLUMNS if output == "tidy" else self._wide_columns(var_dict)
            df = pd.DataFrame(columns=columns)
        else:
            df = self._create_geoid(df, geography)
            df = self.transformer.clean_missing_values(df, request_vars)
            df = self._tidy_observations(df, var_dict) if output == "tidy" else (
                self._wide_observations(df, var_dict)
            )

        logger.info(f"Fetched {len(df)} records")

        if geometry:
            df = self.join_tiger_geometries(df, geography, year=year, state=state)
        return df

    def fetch_flows(
        self,
        geography: str = "metropolitan statistical area",
        year: int = 2019,
        state: Optional[str] = None,
        county: Optional[str] = None,
        geometry: bool = False
    ) -> Union[pd.DataFrame, gpd.GeoDataFrame]:
        """
        Fetch ACS migration flows.

        Returns one row per (GEOID1, GEOID2, direction). Counterparts outside
        the published geographies (world regions, "Outside Metro Area") have
        a missing GEOID2.

        Args:
            geography: county, county subdivision, or metropolitan statistical area.
            year: End year of the 5-year window (2013 -> 2009-2013).
            state: State filter for county-based geographies.
            county: County filter for county subdivisions.
            geometry: Attach centroid1/centroid2 point geometry.

        Returns:
            DataFrame, or GeoDataFrame with centroid1 as active geometry.
        """
        logger.info(f"Fetching {year} migration flows at {geography} level")

        state = self.geography.get_state_fips(state) if state else None

        raw_data = self.api_client.get_flows(
            variables=self.FLOW_VARIABLES,
            geography=geography,
            state=state,
            county=county,
            year=year
        )

        numeric = [v for v in self.FLOW_VARIABLES if v.startswith("MOVED")]
        df = self._parse_api_response(raw_data, numeric=numeric)

        if df.empty:
            flows = pd.DataFrame(columns=FLOW_COLUMNS)
        else:
            df = self.transformer.clean_missing_values(df, numeric)
            parts = []
            for direction in self.FLOW_DIRECTIONS:
                part = df[["GEOID1", "GEOID2", "FULL1_NAME", "FULL2_NAME"]].copy()
                part["variable"] = direction
                part["estimate"] = df[direction]
                part["moe"] = df[f"{direction}_M"]
                parts.append(part)

            flows = pd.concat(parts, ignore_index=True)
            flows = flows.sort_values(["GEOID1", "variable"], kind="mergesort").reset_index(drop=True)
            flows["year"] = year

        logger.info(f"Fetched {len(flows)} flow records")

        if geometry:
            flows = self._attach_centroids(flows, geography, year, state)
        return flows

    def fetch_flow_snapshots(
        self,
        geography: str,
        years: Iterable[int],
        state: Optional[str] = None,
        county: Optional[str] = None,
        geometry: bool = False
    ) -> Dict[int, pd.DataFrame]:
        """
        Fetch several flow snapshots, in parallel when workers allow.

        The snapshots are independent; the first failure aborts the call and
        no partial result is returned.

        Returns:
            Dict mapping year to its flow table.
        """
        years = list(years)
        workers = max(1, min(self.config.parallel_workers, len(years)))

        logger.info(f"Fetching {len(years)} flow snapshots with {workers} workers")

        if workers == 1:
            return {
                year: self.fetch_flows(geography, year, state, county, geometry)
                for year in years
            }

        results = {}
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.fetch_flows, geography, year, state, county, geometry): year
                for year in years
            }

            for future in as_completed(futures):
                year = futures[future]
                try:
                    results[year] = future.result()
                except Exception as e:
                    logger.error(f"Error fetching {year} flows: {e}")
                    for pending in futures:
                        pending.cancel()
                    raise
                logger.info(f"Completed {year} flows")

        return {year: results[year] for year in years}

    def fetch_population_characteristics(
        self,
        geography: str = "state",
        year: int = 2019,
        state: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Fetch population by sex and five-year age group.

        Only the 18 five-year age bands and the two sex categories are kept;
        totals published alongside them are dropped.

        Args:
            geography: state or county.
            year: Population Estimates vintage (2015-2019).
            state: State filter for county geography.

        Returns:
            DataFrame with GEOID, NAME, sex, age_group, estimate, year.
        """
        logger.info(f"Fetching {year} population characteristics at {geography} level")

        state = self.geography.get_state_fips(state) if state else None

        raw_data = self.api_client.get_pep_characteristics(
            variables=["POP", "SEX", "AGEGROUP"],
            geography=geography,
            state=state,
            year=year
        )

        df = self._parse_api_response(raw_data, numeric=["POP", "SEX", "AGEGROUP"])
        if df.empty:
            return pd.DataFrame(columns=BREAKDOWN_COLUMNS)

        df = self._create_geoid(df, geography)
        df = self.transformer.filter_rows(
            df,
            lambda d: d["SEX"].isin(list(self.SEX_LABELS)) & d["AGEGROUP"].isin(list(self.AGE_GROUP_LABELS))
        )

        df["sex"] = df["SEX"].astype(int).map(self.SEX_LABELS)
        df["age_group"] = df["AGEGROUP"].astype(int).map(self.AGE_GROUP_LABELS)
        df["estimate"] = df["POP"]
        df["year"] = year

        df = df.sort_values(["GEOID", "SEX", "AGEGROUP"], kind="mergesort")
        result = df[BREAKDOWN_COLUMNS].reset_index(drop=True)

        logger.info(f"Fetched {len(result)} population records")
        return result

    def join_tiger_geometries(
        self,
        df: pd.DataFrame,
        geography: str,
        year: int = 2019,
        state: Optional[str] = None,
        resolution: str = "500k"
    ) -> gpd.GeoDataFrame:
        """
        Join cartographic boundary geometries to Census data.

        Args:
            df: DataFrame with GEOID column.
            geography: Geographic level for geometry matching.
            year: Boundary vintage year.
            state: State FIPS for per-state boundary files. Inferred from
                GEOIDs when omitted.
            resolution: Cartographic boundary resolution (500k, 5m, 20m).

        Returns:
            GeoDataFrame with geometry column added. Rows without a matching
            boundary keep an empty geometry.
        """
        logger.info(f"Joining {geography} geometries (year={year})")

        boundaries = self._load_boundaries(df, geography, year, state, resolution)

        gdf = boundaries[["GEOID", "geometry"]].merge(df, on="GEOID", how="right")
        gdf = gpd.GeoDataFrame(gdf, geometry="geometry", crs=boundaries.crs).to_crs("EPSG:4326")

        logger.info(f"Joined geometries for {len(gdf)} features")
        return gdf

    def render(
        self,
        data: Union[pd.DataFrame, gpd.GeoDataFrame],
        output: Union[str, Path],
        kind: str,
        config: Optional[RenderConfig] = None
    ) -> Path:
        """
        Render a finished table.

        Args:
            data: Table to render.
            output: Output file path.
            kind: choropleth, pyramid, bar, table, or arcs.
            config: Presentation settings.
        """
        return self.renderer.render(data, output, kind, config)

    def _load_boundaries(
        self,
        df: pd.DataFrame,
        geography: str,
        year: int,
        state: Optional[str],
        resolution: str
    ) -> gpd.GeoDataFrame:
        """Load boundaries, one file per state for per-state geographies."""
        if geography in ("state", "county", "metropolitan statistical area") or state:
            return self.geography.get_tiger_boundaries(
                geography=geography, year=year, resolution=resolution, state=state
            )

        states = sorted({parse_geoid(geoid)["state"] for geoid in df["GEOID"].dropna()})
        if not states:
            return gpd.GeoDataFrame(
                {"GEOID": pd.Series([], dtype=object)}, geometry=gpd.GeoSeries([]), crs="EPSG:4326"
            )

        frames = [
            self.geography.get_tiger_boundaries(
                geography=geography, year=year, resolution=resolution, state=fips
            )
            for fips in states
        ]
        return gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), crs=frames[0].crs)

    def _attach_centroids(
        self,
        flows: pd.DataFrame,
        geography: str,
        year: int,
        state: Optional[str]
    ) -> gpd.GeoDataFrame:
        """Add centroid1/centroid2 point columns; centroid1 is the active geometry."""
        boundary_state = state if geography == "county subdivision" else None
        lookup = self.geography.get_centroids(geography, year=year, state=boundary_state).to_dict()

        flows = flows.copy()
        for side in ("1", "2"):
            points = [lookup.get(geoid) if isinstance(geoid, str) else None for geoid in flows[f"GEOID{side}"]]
            flows[f"centroid{side}"] = gpd.GeoSeries(points, index=flows.index, crs="EPSG:4326")

        return gpd.GeoDataFrame(flows, geometry="centroid1", crs="EPSG:4326")

    def _parse_api_response(
        self,
        response: List[List],
        numeric: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """Parse Census API JSON response into DataFrame."""
        if not response:
            return pd.DataFrame()

        headers = response[0]
        data = response[1:]

        df = pd.DataFrame(data, columns=headers)

        for col in numeric or []:
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors="coerce")

        return df

    def _create_geoid(self, df: pd.DataFrame, geography: str) -> pd.DataFrame:
        """Create standardized GEOID from component FIPS codes."""
        components = GEOID_COMPONENTS.get(geography)
        if not components:
            raise ValueError(f"Unsupported geography: {geography}")

        geoid = df[components[0]].astype(str)
        for col in components[1:]:
            geoid = geoid + df[col].astype(str)

        df = df.copy()
        df["GEOID"] = geoid
        return df

    def _tidy_observations(self, df: pd.DataFrame, var_dict: Dict[str, str]) -> pd.DataFrame:
        """One row per geography and variable."""
        parts = []
        for code, name in var_dict.items():
            part = df[["GEOID", "NAME"]].copy()
            part["variable"] = name
            part["estimate"] = df[f"{code}E"]
            part["moe"] = df[f"{code}M"]
            parts.append(part)

        tidy = pd.concat(parts, ignore_index=True)
        return tidy.sort_values("GEOID", kind="mergesort").reset_index(drop=True)

    def _wide_observations(self, df: pd.DataFrame, var_dict: Dict[str, str]) -> pd.DataFrame:
        """One row per geography; `<name>` and `<name>_moe` columns per variable."""
        wide = df[["GEOID", "NAME"]].copy()
        for code, name in var_dict.items():
            wide[name] = df[f"{code}E"]
            wide[f"{name}_moe"] = df[f"{code}M"]
        return wide

    @staticmethod
    def _wide_columns(var_dict: Dict[str, str]) -> List[str]:
        """Column order of wide observation tables."""
        columns = ["GEOID", "NAME"]
        for name in var_dict.values():
            columns += [name, f"{name}_moe"]
        return columns

    @staticmethod
    def _base_code(code: str) -> str:
        """Strip the estimate suffix from a variable code (B19013_001E -> B19013_001)."""
        return code[:-1] if code.endswith("E") else code
