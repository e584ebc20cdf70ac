"""
Example: Metro Area Migration Flows

This example compares ACS metro-to-metro migration flows for the
Dallas-Fort Worth metro area between the 2009-2013 and 2015-2019 windows:
largest origins, an arc-flow map, origins that are new since 2013, and
growth of flows reported in both windows.

Author: Mir Md Tasnim Alam
"""

import os
import sys
import logging
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from census_flows import CensusPipeline, PipelineConfig, RenderConfig


OUTPUT_DIR = "output"
DFW_CBSA = "19100"


def main():
    """Analyze migration into Dallas-Fort Worth."""
    logging.basicConfig(level=logging.INFO)

    # MAPBOX_TOKEN enables the Mapbox basemap for the arc map
    pipeline = CensusPipeline(PipelineConfig.from_env())
    transformer = pipeline.transformer

    print("Fetching 2013 and 2019 metro migration flows...")
    snapshots = pipeline.fetch_flow_snapshots(
        geography="metropolitan statistical area",
        years=[2013, 2019],
        geometry=True
    )

    prior = transformer.filter_equals(snapshots[2013], "GEOID1", DFW_CBSA)
    current = transformer.filter_equals(snapshots[2019], "GEOID1", DFW_CBSA)

    # Largest origins of movers into DFW
    top_origins = transformer.top_flows(current, n=25, direction="MOVEDIN")
    top_origins = transformer.flow_arcs(top_origins, width_divisor=500)

    print("\nTop 10 origins of movers to Dallas-Fort Worth (2015-2019, per year):")
    for _, row in top_origins.head(10).iterrows():
        print(f"  {row['FULL2_NAME']}: {row['estimate']:,.0f}")

    pipeline.render(
        top_origins,
        os.path.join(OUTPUT_DIR, "dfw_top_origins_2019.png"),
        kind="bar",
        config=RenderConfig(
            title="Largest origins of movers to Dallas-Fort Worth, 2015-2019 ACS",
            label_column="FULL2_NAME",
            weight_column="estimate"
        )
    )

    pipeline.render(
        top_origins,
        os.path.join(OUTPUT_DIR, "dfw_inflows_2019.html"),
        kind="arcs",
        config=RenderConfig(
            title="Migration to Dallas-Fort Worth, 2015-2019 ACS",
            weight_column="width",
            tooltip_column="tooltip",
            palette="plasma"
        )
    )

    # Origins reported in 2015-2019 but not in 2009-2013
    prior_in = transformer.filter_equals(transformer.drop_missing(prior, "GEOID2"), "variable", "MOVEDIN")
    current_in = transformer.filter_equals(transformer.drop_missing(current, "GEOID2"), "variable", "MOVEDIN")

    new_origins = transformer.new_flows(current_in, prior_in)
    new_origins = transformer.annualize(new_origins, periods=5)
    print(f"\n{len(new_origins)} origins appear in 2015-2019 but not 2009-2013")

    pipeline.render(
        new_origins[["FULL2_NAME", "estimate", "annualized"]],
        os.path.join(OUTPUT_DIR, "dfw_new_origins_2019.html"),
        kind="table",
        config=RenderConfig(
            title="Origins new since 2009-2013, movers to Dallas-Fort Worth",
            sort_column="annualized"
        )
    )

    # Growth of flows reported in both windows
    growth = transformer.flow_growth(prior_in, current_in, min_prior=500, min_current=500)
    growth = growth[["FULL2_NAME_current", "estimate_prior", "estimate_current", "growth_rate"]]

    pipeline.render(
        growth,
        os.path.join(OUTPUT_DIR, "dfw_flow_growth.html"),
        kind="table",
        config=RenderConfig(
            title="Growth in migration to Dallas-Fort Worth, 2009-2013 to 2015-2019",
            sort_column="growth_rate",
            page_size=15
        )
    )

    print(f"\nOutputs written to: {OUTPUT_DIR}/")


if __name__ == "__main__":
    main()
