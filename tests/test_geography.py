"""
Tests for GeographyManager and FIPS utilities.
"""

import geopandas as gpd
import pytest
import requests
from shapely.geometry import box

from census_flows import GeographyManager, RetrievalError, parse_geoid
from census_flows.geography import tiger_geoid_column


@pytest.fixture
def manager():
    return GeographyManager()


class TestStateFips:
    """Tests for state lookups."""

    @pytest.mark.parametrize("state", ["48", "Texas", "texas", "TX", "tx"])
    def test_lookup(self, manager, state):
        assert manager.get_state_fips(state) == "48"

    def test_unknown_state(self, manager):
        with pytest.raises(ValueError, match="Unknown state"):
            manager.get_state_fips("Atlantis")


class TestBoundaryUrls:
    """Tests for cartographic boundary URL construction."""

    def test_national_file(self, manager):
        url = manager._build_tiger_url("metropolitan statistical area", 2019, "500k")

        assert url == "https://www2.census.gov/geo/tiger/GENZ2019/shp/cb_2019_us_cbsa_500k.zip"

    def test_per_state_file(self, manager):
        url = manager._build_tiger_url("tract", 2019, "500k", state="48")

        assert url.endswith("/GENZ2019/shp/cb_2019_48_tract_500k.zip")

    def test_place_file(self, manager):
        url = manager._build_tiger_url("place", 2019, "500k", state="48")

        assert url.endswith("/GENZ2019/shp/cb_2019_48_place_500k.zip")

    def test_per_state_file_requires_state(self, manager):
        with pytest.raises(ValueError, match="State required"):
            manager._build_tiger_url("tract", 2019, "500k")

    def test_unsupported_geography(self, manager):
        with pytest.raises(ValueError):
            manager._build_tiger_url("zip code", 2019, "500k")

    def test_geoid_column(self):
        assert tiger_geoid_column("state") == "STATEFP"
        assert tiger_geoid_column("tract") == "GEOID"


class TestCache:
    """Tests for boundary cache paths."""

    def test_disabled_by_default(self, manager):
        assert manager._get_cache_path("county", 2019, "500k", None) is None

    def test_named_by_request(self, tmp_path):
        manager = GeographyManager(cache_dir=tmp_path / "boundaries")

        path = manager._get_cache_path("county subdivision", 2019, "500k", "48")

        assert path == tmp_path / "boundaries" / "county_subdivision_2019_500k_48.gpkg"
        assert path.parent.is_dir()


class TestBoundaries:
    """Tests for boundary loading."""

    def test_year_clamped_to_first_vintage(self, manager, monkeypatch):
        urls = []

        def fake_download(url):
            urls.append(url)
            return gpd.GeoDataFrame(
                {"GEOID": ["19100"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4269"
            )

        monkeypatch.setattr(manager, "_download_shapefile", fake_download)

        manager.get_tiger_boundaries("metropolitan statistical area", year=2010)

        assert "cb_2013_us_cbsa_500k.zip" in urls[0]

    def test_state_geoid_standardized(self, manager, monkeypatch):
        states = gpd.GeoDataFrame(
            {"STATEFP": ["48"], "NAME": ["Texas"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4269"
        )
        monkeypatch.setattr(manager, "_download_shapefile", lambda url: states)

        gdf = manager.get_tiger_boundaries("state")

        assert gdf["GEOID"].tolist() == ["48"]

    def test_download_failure(self, manager, monkeypatch):
        def fail(url, timeout=None):
            raise requests.exceptions.ConnectionError("no route")

        monkeypatch.setattr("census_flows.geography.requests.get", fail)

        with pytest.raises(RetrievalError) as excinfo:
            manager.get_tiger_boundaries("county", year=2019)

        assert excinfo.value.params["url"].endswith("cb_2019_us_county_500k.zip")


class TestCentroids:
    """Tests for centroid computation."""

    def test_centroids_indexed_by_geoid(self, manager, monkeypatch, metro_boundaries):
        monkeypatch.setattr(
            manager, "get_tiger_boundaries", lambda geography, year=2019, state=None: metro_boundaries
        )

        centroids = manager.get_centroids("metropolitan statistical area")

        assert centroids.crs.to_epsg() == 4326
        assert list(centroids.index) == ["19100", "26420", "31080"]
        assert centroids["19100"].x == pytest.approx(-97.0, abs=0.05)
        assert centroids["19100"].y == pytest.approx(33.0, abs=0.05)


class TestParseGeoid:
    """Tests for GEOID decomposition."""

    def test_tract(self):
        assert parse_geoid("48113000100") == {"state": "48", "county": "113", "tract": "000100"}

    def test_block_group(self):
        assert parse_geoid("481130001001")["block_group"] == "1"

    def test_state(self):
        assert parse_geoid("48") == {"state": "48"}
