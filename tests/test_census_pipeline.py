"""
Tests for CensusPipeline with fake retrieval and geography components.
"""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from census_flows import CensusPipeline, PipelineConfig, RetrievalError

from conftest import FakeAPIClient


@pytest.fixture
def tract_payload():
    return [
        ["NAME", "B19013_001E", "B19013_001M", "state", "county", "tract"],
        ["Census Tract 1, Dallas County, Texas", "50000", "4000", "48", "113", "000100"],
        ["Census Tract 2, Dallas County, Texas", "-666666666", "-222222222", "48", "113", "000200"],
    ]


@pytest.fixture
def tract_boundaries():
    return gpd.GeoDataFrame(
        {"GEOID": ["48113000100", "48113000200"]},
        geometry=[box(-96.9, 32.7, -96.8, 32.8), box(-96.8, 32.7, -96.7, 32.8)],
        crs="EPSG:4269",
    )


@pytest.fixture
def pep_payload():
    return [
        ["NAME", "POP", "SEX", "AGEGROUP", "state"],
        ["Texas", "28995881", "0", "0", "48"],
        ["Texas", "1010000", "1", "1", "48"],
        ["Texas", "970000", "2", "1", "48"],
        ["Texas", "160000", "1", "18", "48"],
        ["Texas", "3600000", "1", "19", "48"],
    ]


class TestFetchACS5:
    """Tests for ACS 5-year retrieval."""

    def test_tidy_output(self, make_pipeline, tract_payload):
        client = FakeAPIClient(acs5=tract_payload)
        pipeline = make_pipeline(client)

        df = pipeline.fetch_acs5({"B19013_001E": "median_income"}, "tract", state="TX", county="113")

        assert list(df.columns) == ["GEOID", "NAME", "variable", "estimate", "moe"]
        assert df["GEOID"].tolist() == ["48113000100", "48113000200"]
        assert df["variable"].unique().tolist() == ["median_income"]
        assert df["estimate"].iloc[0] == 50000
        assert pd.isna(df["estimate"].iloc[1])
        assert pd.isna(df["moe"].iloc[1])

    def test_requests_estimate_and_moe(self, make_pipeline, tract_payload):
        client = FakeAPIClient(acs5=tract_payload)
        pipeline = make_pipeline(client)

        pipeline.fetch_acs5(["B19013_001"], "tract", state="48", county="113", year=2019)

        kind, variables, geography, state, county, year = client.calls[0]
        assert variables == ["B19013_001E", "B19013_001M"]
        assert (geography, state, county, year) == ("tract", "48", "113", 2019)

    def test_wide_output(self, make_pipeline, tract_payload):
        pipeline = make_pipeline(FakeAPIClient(acs5=tract_payload))

        df = pipeline.fetch_acs5({"B19013_001": "median_income"}, "tract", state="48", output="wide")

        assert list(df.columns) == ["GEOID", "NAME", "median_income", "median_income_moe"]
        assert len(df) == 2

    def test_unknown_output(self, make_pipeline):
        with pytest.raises(ValueError):
            make_pipeline(FakeAPIClient()).fetch_acs5(["B01003_001"], "state", output="long")

    def test_geometry(self, make_pipeline, tract_payload, tract_boundaries):
        pipeline = make_pipeline(FakeAPIClient(acs5=tract_payload), boundaries=tract_boundaries)

        gdf = pipeline.fetch_acs5(
            {"B19013_001": "median_income"}, "tract", state="48", county="113", geometry=True
        )

        assert isinstance(gdf, gpd.GeoDataFrame)
        assert gdf.crs.to_epsg() == 4326
        assert gdf.geometry.notna().all()
        assert pipeline.geography.requests == [("tract", 2019, "48")]

    def test_tract_boundaries_inferred_from_geoids(self, make_pipeline, tract_boundaries):
        pipeline = make_pipeline(FakeAPIClient(), boundaries=tract_boundaries)
        df = pd.DataFrame({"GEOID": ["48113000100"], "estimate": [1.0]})

        pipeline.join_tiger_geometries(df, "tract", year=2019)

        assert pipeline.geography.requests == [("tract", 2019, "48")]

    def test_place_geometry(self, make_pipeline):
        payload = [["NAME", "B01003_001E", "B01003_001M", "state", "place"],
                   ["Dallas city, Texas", "1330612", "-555555555", "48", "19000"]]
        places = gpd.GeoDataFrame(
            {"GEOID": ["4819000"]}, geometry=[box(-97.0, 32.6, -96.5, 33.0)], crs="EPSG:4269"
        )
        pipeline = make_pipeline(FakeAPIClient(acs5=payload), boundaries=places)

        gdf = pipeline.fetch_acs5(["B01003_001"], "place", state="48", geometry=True)

        assert gdf["GEOID"].tolist() == ["4819000"]
        assert gdf.geometry.notna().all()
        assert pipeline.geography.requests == [("place", 2019, "48")]

    def test_unmatched_rows_keep_empty_geometry(self, make_pipeline, tract_boundaries):
        pipeline = make_pipeline(FakeAPIClient(), boundaries=tract_boundaries)
        df = pd.DataFrame({"GEOID": ["48113000100", "48113999999"], "estimate": [1.0, 2.0]})

        gdf = pipeline.join_tiger_geometries(df, "tract", state="48")

        assert len(gdf) == 2
        assert gdf.geometry.isna().tolist() == [False, True]

    def test_empty_response(self, make_pipeline):
        df = make_pipeline(FakeAPIClient(acs5=[])).fetch_acs5(["B01003_001"], "state")

        assert df.empty
        assert list(df.columns) == ["GEOID", "NAME", "variable", "estimate", "moe"]

    def test_empty_wide_response(self, make_pipeline):
        df = make_pipeline(FakeAPIClient(acs5=[])).fetch_acs5(
            {"B01003_001": "population"}, "state", output="wide"
        )

        assert df.empty
        assert list(df.columns) == ["GEOID", "NAME", "population", "population_moe"]


class TestFetchFlows:
    """Tests for migration flow retrieval."""

    def test_tidy_flows(self, make_pipeline, flows_2019):
        pipeline = make_pipeline(FakeAPIClient(flows={2019: flows_2019}))

        flows = pipeline.fetch_flows("metropolitan statistical area", year=2019)

        assert len(flows) == 6
        assert set(flows["variable"]) == {"MOVEDIN", "MOVEDOUT"}
        assert (flows["year"] == 2019).all()

        houston_in = flows[(flows["GEOID2"] == "26420") & (flows["variable"] == "MOVEDIN")]
        assert houston_in["estimate"].tolist() == [12000]
        assert houston_in["moe"].tolist() == [900]

    def test_foreign_counterpart_has_missing_geoid(self, make_pipeline, flows_2019):
        pipeline = make_pipeline(FakeAPIClient(flows={2019: flows_2019}))

        flows = pipeline.fetch_flows("metropolitan statistical area", year=2019)
        asia = flows[flows["FULL2_NAME"] == "Asia"]

        assert asia["GEOID2"].isna().all()
        assert asia.loc[asia["variable"] == "MOVEDOUT", "estimate"].isna().all()

    def test_centroids(self, make_pipeline, flows_2019):
        pipeline = make_pipeline(FakeAPIClient(flows={2019: flows_2019}))

        flows = pipeline.fetch_flows("metropolitan statistical area", year=2019, geometry=True)

        assert isinstance(flows, gpd.GeoDataFrame)
        assert flows.geometry.name == "centroid1"
        assert flows.crs.to_epsg() == 4326

        dallas = flows["centroid1"].iloc[0]
        assert dallas.x == pytest.approx(-97.0, abs=0.05)
        assert dallas.y == pytest.approx(33.0, abs=0.05)

        asia = flows[flows["FULL2_NAME"] == "Asia"]
        assert asia["centroid2"].isna().all()

        houston = flows.loc[flows["GEOID2"] == "26420", "centroid2"].iloc[0]
        assert houston.x == pytest.approx(-95.4, abs=0.05)

    def test_retrieval_error_propagates(self, make_pipeline):
        error = RetrievalError("Census API unreachable", {"year": 2019})
        pipeline = make_pipeline(FakeAPIClient(flows={2019: error}))

        with pytest.raises(RetrievalError):
            pipeline.fetch_flows("metropolitan statistical area", year=2019)

    def test_state_name_resolved(self, make_pipeline, flows_2019):
        client = FakeAPIClient(flows={2019: flows_2019})
        pipeline = make_pipeline(client)

        pipeline.fetch_flows("county", year=2019, state="Texas")

        assert client.calls[0][3] == "48"


class TestFlowSnapshots:
    """Tests for fetching several flow years."""

    def test_parallel_snapshots(self, make_pipeline, flows_2013, flows_2019):
        pipeline = make_pipeline(FakeAPIClient(flows={2013: flows_2013, 2019: flows_2019}))

        snapshots = pipeline.fetch_flow_snapshots("metropolitan statistical area", [2013, 2019])

        assert list(snapshots) == [2013, 2019]
        assert len(snapshots[2013]) == 4
        assert len(snapshots[2019]) == 6

    def test_sequential_snapshots(self, make_pipeline, flows_2013, flows_2019):
        client = FakeAPIClient(flows={2013: flows_2013, 2019: flows_2019})
        pipeline = make_pipeline(client, pipeline_config=PipelineConfig(parallel_workers=1))

        snapshots = pipeline.fetch_flow_snapshots("metropolitan statistical area", [2019, 2013])

        assert list(snapshots) == [2019, 2013]
        assert [call[5] for call in client.calls] == [2019, 2013]

    def test_failure_aborts(self, make_pipeline, flows_2019):
        error = RetrievalError("Census API returned HTTP 503", {"year": 2013})
        pipeline = make_pipeline(FakeAPIClient(flows={2013: error, 2019: flows_2019}))

        with pytest.raises(RetrievalError):
            pipeline.fetch_flow_snapshots("metropolitan statistical area", [2013, 2019])

    def test_new_origins_across_snapshots(self, make_pipeline, flows_2013, flows_2019):
        """Los Angeles is reported in 2015-2019 only."""
        pipeline = make_pipeline(FakeAPIClient(flows={2013: flows_2013, 2019: flows_2019}))
        transformer = pipeline.transformer
        snapshots = pipeline.fetch_flow_snapshots("metropolitan statistical area", [2013, 2019])

        prior = transformer.filter_equals(transformer.drop_missing(snapshots[2013], "GEOID2"), "variable", "MOVEDIN")
        current = transformer.filter_equals(transformer.drop_missing(snapshots[2019], "GEOID2"), "variable", "MOVEDIN")

        new = transformer.new_flows(current, prior)
        growth = transformer.flow_growth(prior, current)

        assert new["GEOID2"].tolist() == ["31080"]
        assert growth["GEOID2"].tolist() == ["26420"]
        assert growth["growth_rate"].tolist() == pytest.approx([0.2])

    def test_growth_from_fetched_snapshots(self, make_pipeline, flows_2013, flows_2019):
        """Tidy snapshots hold both directions and foreign counterparts."""
        pipeline = make_pipeline(FakeAPIClient(flows={2013: flows_2013, 2019: flows_2019}))
        snapshots = pipeline.fetch_flow_snapshots("metropolitan statistical area", [2013, 2019])

        growth = pipeline.transformer.flow_growth(snapshots[2013], snapshots[2019])

        assert growth["GEOID2"].tolist() == ["26420", "26420"]
        assert growth["variable"].tolist() == ["MOVEDIN", "MOVEDOUT"]
        assert growth["growth_rate"].tolist() == pytest.approx([0.2, 0.125])

    def test_new_flows_from_fetched_snapshots(self, make_pipeline, flows_2013, flows_2019):
        pipeline = make_pipeline(FakeAPIClient(flows={2013: flows_2013, 2019: flows_2019}))
        snapshots = pipeline.fetch_flow_snapshots("metropolitan statistical area", [2013, 2019])

        new = pipeline.transformer.new_flows(snapshots[2019], snapshots[2013])

        assert new["GEOID2"].tolist() == ["31080", "31080"]
        assert new["variable"].tolist() == ["MOVEDIN", "MOVEDOUT"]


class TestPopulationCharacteristics:
    """Tests for age/sex breakdown retrieval."""

    def test_breakdown(self, make_pipeline, pep_payload):
        pipeline = make_pipeline(FakeAPIClient(pep=pep_payload))

        df = pipeline.fetch_population_characteristics(year=2019)

        assert list(df.columns) == ["GEOID", "NAME", "sex", "age_group", "estimate", "year"]
        assert df["sex"].tolist() == ["Male", "Male", "Female"]
        assert df["age_group"].tolist() == [
            "Age 0 to 4 years", "Age 85 years and older", "Age 0 to 4 years"
        ]
        assert df["estimate"].tolist() == [1010000, 160000, 970000]
        assert (df["GEOID"] == "48").all()

    def test_estimates_non_negative(self, make_pipeline, pep_payload):
        df = make_pipeline(FakeAPIClient(pep=pep_payload)).fetch_population_characteristics()

        assert (df["estimate"] >= 0).all()


class TestDefaults:
    """Tests for pipeline construction."""

    def test_builds_components_from_config(self):
        config = PipelineConfig(census_api_key="abc", mapbox_token="pk.test", timeout=5.0)

        pipeline = CensusPipeline(config)

        assert pipeline.api_client.api_key == "abc"
        assert pipeline.api_client.timeout == 5.0
        assert pipeline.geography.cache_dir is None
        assert pipeline.renderer.mapbox_token == "pk.test"
