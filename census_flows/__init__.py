"""
Census Flows

Census Bureau estimates, migration flows and population pyramids:
retrieval, reshaping and rendering.

Author: Mir Md Tasnim Alam
https://github.com/tasnim966937
"""

from .census_pipeline import CensusPipeline
from .api_client import CensusAPIClient, RetrievalError
from .config import PipelineConfig
from .geography import (
    GeographyManager,
    FIPS_CODES,
    STATE_NAME_TO_FIPS,
    parse_geoid
)
from .transformers import DataTransformer, ComputationError
from .renderers import DataRenderer, RenderConfig, RenderError

__version__ = "1.0.0"
__author__ = "Mir Md Tasnim Alam"

__all__ = [
    "CensusPipeline",
    "CensusAPIClient",
    "PipelineConfig",
    "GeographyManager",
    "DataTransformer",
    "DataRenderer",
    "RenderConfig",
    "RetrievalError",
    "ComputationError",
    "RenderError",
    "FIPS_CODES",
    "STATE_NAME_TO_FIPS",
    "parse_geoid"
]
