"""
Shared fixtures: fake API client and geography manager, so tests run
without network access.
"""

import threading

import matplotlib
matplotlib.use("Agg")

import geopandas as gpd
import pytest
from shapely.geometry import box

from census_flows import CensusPipeline, GeographyManager, PipelineConfig


DFW = "Dallas-Fort Worth-Arlington, TX Metro Area"
HOUSTON = "Houston-The Woodlands-Sugar Land, TX Metro Area"
LOS_ANGELES = "Los Angeles-Long Beach-Anaheim, CA Metro Area"
MSA_COLUMN = "metropolitan statistical area/micropolitan statistical area"

FLOW_HEADER = [
    "GEOID1", "GEOID2", "FULL1_NAME", "FULL2_NAME",
    "MOVEDIN", "MOVEDIN_M", "MOVEDOUT", "MOVEDOUT_M", MSA_COLUMN
]


class FakeAPIClient:
    """Returns canned Census API payloads and records every call."""

    def __init__(self, acs5=None, flows=None, pep=None):
        self.acs5 = acs5 or []
        self.flows = flows or {}
        self.pep = pep or []
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def get_acs5(self, variables, geography, state=None, county=None, year=2019):
        self._record("acs5", list(variables), geography, state, county, year)
        return self.acs5

    def get_flows(self, variables, geography, state=None, county=None, year=2019):
        self._record("flows", list(variables), geography, state, county, year)
        result = self.flows[year]
        if isinstance(result, Exception):
            raise result
        return result

    def get_pep_characteristics(self, variables, geography, state=None, year=2019):
        self._record("pep", list(variables), geography, state, year)
        return self.pep


class FakeGeography(GeographyManager):
    """Serves a fixed boundary frame instead of downloading."""

    def __init__(self, boundaries):
        super().__init__(cache_dir=None)
        self.boundaries = boundaries
        self.requests = []

    def get_tiger_boundaries(self, geography, year=2019, resolution="500k", state=None):
        self.requests.append((geography, year, state))
        return self.boundaries


def flow_payload(year_rows):
    return [FLOW_HEADER] + year_rows


@pytest.fixture
def metro_boundaries():
    """One-degree squares around three metro areas (NAD83)."""
    return gpd.GeoDataFrame(
        {
            "GEOID": ["19100", "26420", "31080"],
            "NAME": ["Dallas-Fort Worth-Arlington, TX", "Houston-The Woodlands-Sugar Land, TX",
                     "Los Angeles-Long Beach-Anaheim, CA"],
        },
        geometry=[
            box(-97.5, 32.5, -96.5, 33.5),
            box(-95.9, 29.3, -94.9, 30.3),
            box(-118.7, 33.5, -117.7, 34.5),
        ],
        crs="EPSG:4269",
    )


@pytest.fixture
def flows_2019():
    return flow_payload([
        ["19100", "26420", DFW, HOUSTON, "12000", "900", "9000", "800", "19100"],
        ["19100", "31080", DFW, LOS_ANGELES, "8000", "700", "3000", "400", "19100"],
        ["19100", None, DFW, "Asia", "5000", "600", None, None, "19100"],
    ])


@pytest.fixture
def flows_2013():
    return flow_payload([
        ["19100", "26420", DFW, HOUSTON, "10000", "850", "8000", "750", "19100"],
        ["19100", None, DFW, "Asia", "4000", "500", None, None, "19100"],
    ])


@pytest.fixture
def config():
    return PipelineConfig(census_api_key="test-key", rate_limit_delay=0.0, parallel_workers=2)


@pytest.fixture
def make_pipeline(config, metro_boundaries):
    """Build a pipeline around a fake client; boundaries default to metro squares."""

    def _make(api_client, boundaries=None, pipeline_config=None):
        geography = FakeGeography(boundaries if boundaries is not None else metro_boundaries)
        return CensusPipeline(
            config=pipeline_config or config,
            api_client=api_client,
            geography=geography,
        )

    return _make
