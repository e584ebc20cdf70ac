"""
Example: Population Pyramid and Tract Income Map

This example fetches Population Estimates age/sex characteristics for a
state, renders a population pyramid, maps ACS median household income by
tract, and writes a sortable state population table.

Author: Mir Md Tasnim Alam
"""

import os
import sys
import logging
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from census_flows import CensusPipeline, PipelineConfig, RenderConfig


OUTPUT_DIR = "output"


def main():
    """Render Texas demographics."""
    logging.basicConfig(level=logging.INFO)

    # Get your API key from: https://api.census.gov/data/key_signup.html
    pipeline = CensusPipeline(PipelineConfig.from_env())
    transformer = pipeline.transformer

    # Population pyramid
    print("Fetching 2019 population characteristics for Texas...")
    states = pipeline.fetch_population_characteristics(geography="state", year=2019)
    texas = transformer.filter_equals(states, "NAME", "Texas")
    pyramid = transformer.population_pyramid(texas, flip="Male")

    pipeline.render(
        pyramid,
        os.path.join(OUTPUT_DIR, "texas_pyramid_2019.png"),
        kind="pyramid",
        config=RenderConfig(title="Population structure in Texas, 2019", palette="viridis")
    )

    # Median household income by tract, Dallas County
    print("Fetching ACS 2015-2019 median household income for Dallas County tracts...")
    income = pipeline.fetch_acs5(
        variables={"B19013_001": "median_income"},
        geography="tract",
        state="TX",
        county="113",
        year=2019,
        geometry=True
    )

    pipeline.render(
        income,
        os.path.join(OUTPUT_DIR, "dallas_income_2019.png"),
        kind="choropleth",
        config=RenderConfig(
            title="Median household income by tract, Dallas County, 2015-2019 ACS",
            palette="magma",
            weight_column="estimate"
        )
    )

    # Sortable state table of total population
    print("Fetching ACS state population totals...")
    population = pipeline.fetch_acs5(
        variables={"B01003_001": "total_population"},
        geography="state",
        year=2019
    )
    population = transformer.drop_missing(population, "estimate")

    pipeline.render(
        population[["NAME", "estimate", "moe"]],
        os.path.join(OUTPUT_DIR, "state_population_2019.html"),
        kind="table",
        config=RenderConfig(
            title="Total population by state, 2015-2019 ACS",
            sort_column="estimate",
            page_size=10
        )
    )

    print(f"\nOutputs written to: {OUTPUT_DIR}/")


if __name__ == "__main__":
    main()
