"""
Data Transformers - Filtering, ranking, joining and derived columns.

Every method returns a new DataFrame; inputs are never modified.

Author: Mir Md Tasnim Alam
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

logger = logging.getLogger(__name__)

Key = Union[str, List[str]]

# Flow pairs are identified by origin and counterpart GEOIDs, never by name
FLOW_KEY = ["GEOID1", "GEOID2"]


class DataTransformer:
    """
    Transformer class for Census data cleaning and reshaping.

    Provides methods for:
    - Missing value handling
    - Predicate filtering and top-N selection
    - Derived columns with explicit zero-denominator failures
    - Anti-joins and inner-joins across time periods
    - Migration flow and population pyramid preparation
    """

    # Census Bureau codes for missing/suppressed data
    MISSING_CODES = {
        -666666666: "too few sample observations",
        -999999999: "no sample observations",
        -888888888: "not applicable",
        -222222222: "too many sample cases",
        -333333333: "median in top/bottom interval",
        -555555555: "estimate is controlled"
    }

    def clean_missing_values(
        self,
        df: pd.DataFrame,
        columns: Optional[Sequence[str]] = None
    ) -> pd.DataFrame:
        """
        Replace Census missing value codes with NaN.

        Args:
            df: Input DataFrame
            columns: Columns to clean (default: all numeric columns)

        Returns:
            Cleaned DataFrame
        """
        df = df.copy()
        columns = list(columns) if columns is not None else list(
            df.select_dtypes(include="number").columns
        )

        codes = list(self.MISSING_CODES.keys())
        for col in columns:
            df[col] = df[col].where(~df[col].isin(codes), np.nan)

        return df

    # ------------------------------------------------------------------
    # Filter
    # ------------------------------------------------------------------

    def filter_rows(
        self,
        df: pd.DataFrame,
        predicate: Callable[[pd.DataFrame], pd.Series]
    ) -> pd.DataFrame:
        """
        Keep rows for which a vectorized predicate is true.

        Args:
            df: Input DataFrame
            predicate: Callable taking the frame, returning a boolean Series

        Returns:
            Filtered DataFrame in original order
        """
        mask = predicate(df).fillna(False).astype(bool)
        return df.loc[mask].copy()

    def drop_missing(self, df: pd.DataFrame, column: str) -> pd.DataFrame:
        """Keep rows where `column` is present."""
        return self.filter_rows(df, lambda d: d[column].notna())

    def filter_equals(self, df: pd.DataFrame, column: str, value) -> pd.DataFrame:
        """Keep rows where `column` equals `value`."""
        return self.filter_rows(df, lambda d: d[column] == value)

    def filter_threshold(self, df: pd.DataFrame, column: str, minimum: float) -> pd.DataFrame:
        """Keep rows where `column` is at least `minimum`."""
        return self.filter_rows(df, lambda d: d[column] >= minimum)

    # ------------------------------------------------------------------
    # TopN
    # ------------------------------------------------------------------

    def top_n(self, df: pd.DataFrame, n: int, column: str) -> pd.DataFrame:
        """
        Select the `n` rows with the largest values of `column`.

        Ties keep their original order. Asking for more rows than exist
        returns every row.

        Args:
            df: Input DataFrame
            n: Number of rows to keep
            column: Numeric column to rank by

        Returns:
            DataFrame sorted by `column` descending
        """
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")

        ranked = df.sort_values(column, ascending=False, kind="mergesort", na_position="last")
        return ranked.head(n).copy()

    # ------------------------------------------------------------------
    # Derive
    # ------------------------------------------------------------------

    def derive(
        self,
        df: pd.DataFrame,
        **columns: Callable[[pd.DataFrame], pd.Series]
    ) -> pd.DataFrame:
        """
        Append columns computed from existing ones.

        Each keyword maps a new column name to a callable receiving the frame
        (including columns derived earlier in the same call).

        A numeric result is undefined where it is infinite, or missing on a
        row whose numeric inputs are all present (0/0).

        Raises:
            ComputationError: If a derived column has undefined values.
        """
        df = df.copy()

        for name, func in columns.items():
            complete = df.select_dtypes(include="number").notna().all(axis=1)

            with np.errstate(divide="ignore", invalid="ignore"):
                values = func(df)

            result = pd.Series(values, index=df.index)
            if is_numeric_dtype(result):
                as_float = result.astype(float)
                undefined = np.isinf(as_float) | (as_float.isna() & complete)
                if undefined.any():
                    logger.error(f"Derived column '{name}' produced {int(undefined.sum())} undefined values")
                    raise ComputationError(
                        f"Derived column '{name}' is undefined for {int(undefined.sum())} row(s)"
                    )

            df[name] = values

        return df

    def scale(
        self,
        df: pd.DataFrame,
        column: str,
        factor: float,
        output: Optional[str] = None
    ) -> pd.DataFrame:
        """Multiply `column` by a constant factor."""
        output = output or f"{column}_scaled"
        return self.derive(df, **{output: lambda d: d[column] * factor})

    def safe_divide(
        self,
        numerator: pd.Series,
        denominator: pd.Series,
        name: str = "ratio"
    ) -> pd.Series:
        """
        Divide two Series, failing on any zero denominator.

        Raises:
            ComputationError: If any denominator is zero.
        """
        zero = denominator == 0
        if zero.any():
            logger.error(f"Zero denominator in '{name}' for {int(zero.sum())} row(s)")
            raise ComputationError(
                f"Cannot compute '{name}': denominator is zero for {int(zero.sum())} row(s)"
            )
        return numerator / denominator

    def growth_rate(
        self,
        df: pd.DataFrame,
        current: str,
        prior: str,
        output: str = "growth_rate"
    ) -> pd.DataFrame:
        """
        Compute `current / prior - 1`.

        Raises:
            ComputationError: If any prior value is zero.
        """
        return self.derive(
            df,
            **{output: lambda d: self.safe_divide(d[current], d[prior], output) - 1}
        )

    def annualize(
        self,
        df: pd.DataFrame,
        column: str = "estimate",
        periods: int = 5,
        output: str = "annualized"
    ) -> pd.DataFrame:
        """Scale a per-year estimate to a multi-year window total."""
        return self.scale(df, column, periods, output)

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def anti_join(self, left: pd.DataFrame, right: pd.DataFrame, key: Key) -> pd.DataFrame:
        """
        Return rows of `left` whose key does not appear in `right`.

        Args:
            left: Rows to keep or discard
            right: Rows whose keys are excluded
            key: Join column or list of columns

        Returns:
            Subset of `left` in original order
        """
        keys = [key] if isinstance(key, str) else list(key)

        matched = pd.merge(
            pd.DataFrame(left[keys]).reset_index(drop=True),
            pd.DataFrame(right[keys]).drop_duplicates(),
            on=keys,
            how="left",
            indicator=True
        )["_merge"] == "both"

        return left.loc[~matched.to_numpy()].copy()

    def inner_join(
        self,
        left: pd.DataFrame,
        right: pd.DataFrame,
        key: Key,
        value_column: str = "estimate",
        left_min: Optional[float] = None,
        right_min: Optional[float] = None,
        suffixes: Tuple[str, str] = ("_left", "_right")
    ) -> pd.DataFrame:
        """
        Join two record sets on `key`, keeping only matched rows.

        Each side is first restricted to rows whose `value_column` meets its
        minimum. Non-key columns present on both sides are suffixed.

        Returns:
            Matched rows; an empty frame when nothing matches

        Raises:
            ValueError: If `key` is not unique on either side after thresholds.
        """
        keys = [key] if isinstance(key, str) else list(key)

        if left_min is not None:
            left = self.filter_threshold(left, value_column, left_min)
        if right_min is not None:
            right = self.filter_threshold(right, value_column, right_min)

        for side, frame in (("left", left), ("right", right)):
            duplicated = frame.duplicated(subset=keys, keep=False)
            if duplicated.any():
                logger.error(f"Inner join on {keys}: {int(duplicated.sum())} {side} rows share a key")
                raise ValueError(
                    f"Join key {keys} is not unique in the {side} table "
                    f"({int(duplicated.sum())} rows share a key)"
                )

        merged = pd.merge(
            pd.DataFrame(left),
            pd.DataFrame(right),
            on=keys,
            how="inner",
            suffixes=suffixes
        )

        logger.debug(f"Inner join on {keys}: {len(left)} x {len(right)} -> {len(merged)} rows")
        return merged

    # ------------------------------------------------------------------
    # SignFlip
    # ------------------------------------------------------------------

    def sign_flip(
        self,
        df: pd.DataFrame,
        column: str,
        category_column: str,
        category
    ) -> pd.DataFrame:
        """
        Negate `column` for rows in one category.

        Applying the same flip twice restores the original values.
        """
        df = df.copy()
        mask = df[category_column] == category
        df[column] = df[column].where(~mask, -df[column])
        return df

    # ------------------------------------------------------------------
    # Migration flows
    # ------------------------------------------------------------------

    def top_flows(
        self,
        flows: pd.DataFrame,
        n: int = 25,
        direction: str = "MOVEDIN"
    ) -> pd.DataFrame:
        """
        Largest flows in one direction between identified geographies.

        Rows without a counterpart GEOID (foreign or regional totals) are
        dropped before ranking.
        """
        flows = self.drop_missing(flows, "GEOID2")
        flows = self.filter_equals(flows, "variable", direction)
        return self.top_n(flows, n, "estimate")

    def flow_arcs(self, flows: pd.DataFrame, width_divisor: float = 500) -> pd.DataFrame:
        """
        Append arc `width` and hover `tooltip` columns for flow maps.

        Tooltips read "N people moved from A to B", oriented by the flow
        direction.
        """
        if width_divisor == 0:
            raise ComputationError("Arc width divisor must be non-zero")

        def tooltip(d: pd.DataFrame) -> pd.Series:
            counts = d["estimate"].map("{:,.0f}".format)
            reference = d["FULL1_NAME"].astype(str)
            counterpart = d["FULL2_NAME"].astype(str)
            moved_in = counts + " people moved from " + counterpart + " to " + reference
            moved_out = counts + " people moved from " + reference + " to " + counterpart
            return moved_in.where(d["variable"] != "MOVEDOUT", moved_out)

        return self.derive(
            flows,
            width=lambda d: d["estimate"] / width_divisor,
            tooltip=tooltip
        )

    def new_flows(self, current: pd.DataFrame, prior: pd.DataFrame) -> pd.DataFrame:
        """
        Flows reported in `current` whose origin/destination pair is absent from `prior`.

        Counterparts without a GEOID2 (world regions, "Outside Metro Area")
        cannot be matched across snapshots and are left out of the result.
        Tidy flow tables are compared per direction.
        """
        current = self.drop_missing(current, "GEOID2")
        prior = self.drop_missing(prior, "GEOID2")
        result = self.anti_join(current, prior, flow_key(current, prior))
        logger.info(f"{len(result)} flow pairs present in current snapshot only")
        return result

    def flow_growth(
        self,
        prior: pd.DataFrame,
        current: pd.DataFrame,
        min_prior: Optional[float] = None,
        min_current: Optional[float] = None
    ) -> pd.DataFrame:
        """
        Growth rate of each flow pair between two snapshots.

        Joins on (GEOID1, GEOID2), plus `variable` for tidy tables holding
        both directions, with optional per-side minimum estimates, then
        computes `growth_rate = estimate_current / estimate_prior - 1`.
        Counterparts without a GEOID2 are dropped before joining.

        Raises:
            ComputationError: If any matched prior estimate is zero.
        """
        prior = self.drop_missing(prior, "GEOID2")
        current = self.drop_missing(current, "GEOID2")
        joined = self.inner_join(
            prior,
            current,
            flow_key(prior, current),
            value_column="estimate",
            left_min=min_prior,
            right_min=min_current,
            suffixes=("_prior", "_current")
        )
        return self.growth_rate(joined, "estimate_current", "estimate_prior")

    # ------------------------------------------------------------------
    # Population pyramid
    # ------------------------------------------------------------------

    def population_pyramid(
        self,
        breakdown: pd.DataFrame,
        flip: str = "Male"
    ) -> pd.DataFrame:
        """Negate one sex's estimates so the two sides plot in opposite directions."""
        return self.sign_flip(breakdown, "estimate", "sex", flip)


def flow_key(*frames: pd.DataFrame) -> List[str]:
    """Pair key for flow tables; tidy tables also key on the direction."""
    if all("variable" in frame.columns for frame in frames):
        return FLOW_KEY + ["variable"]
    return list(FLOW_KEY)


class ComputationError(ArithmeticError):
    """Raised when a derived column is undefined (e.g. division by zero)."""
    pass
