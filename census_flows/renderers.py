"""
Data Renderers - Static charts, interactive tables and arc-flow maps.

Author: Mir Md Tasnim Alam
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import geopandas as gpd
from geopandas.array import GeometryDtype
import matplotlib.pyplot as plt
from matplotlib.ticker import FuncFormatter
import plotly.colors as pc
import plotly.graph_objects as go

logger = logging.getLogger(__name__)


@dataclass
class RenderConfig:
    """
    Presentation settings shared by all render kinds.

    Attributes:
        title: Figure title.
        palette: Colormap name (valid in both matplotlib and plotly).
        weight_column: Numeric column driving color, bar length or arc width.
        tooltip_column: Text column shown on hover (arc maps).
        label_column: Text column labelling bars.
        sort_column: Column used to order table rows.
        ascending: Table sort direction.
        page_size: Table rows per page.
        category_column: Column splitting pyramid sides.
        band_column: Column holding pyramid bands (age groups).
    """

    title: str = ""
    palette: str = "viridis"
    weight_column: str = "estimate"
    tooltip_column: Optional[str] = None
    label_column: str = "NAME"
    sort_column: Optional[str] = None
    ascending: bool = False
    page_size: int = 10
    category_column: str = "sex"
    band_column: str = "age_group"


class DataRenderer:
    """
    Render finished tables with external charting libraries.

    Supported kinds:
    - choropleth (PNG, matplotlib via GeoDataFrame.plot)
    - pyramid (PNG, matplotlib horizontal bars)
    - bar (PNG, matplotlib horizontal bars)
    - table (HTML, plotly table with page selector)
    - arcs (HTML, plotly arc-flow map; Mapbox basemap when a token is set)
    """

    ARC_WIDTH_RANGE = (0.5, 15.0)

    def __init__(self, mapbox_token: Optional[str] = None):
        """
        Initialize renderer.

        Args:
            mapbox_token: Mapbox access token for arc map basemaps.
        """
        self.mapbox_token = mapbox_token

    def render(
        self,
        data: Union[pd.DataFrame, gpd.GeoDataFrame],
        output: Union[str, Path],
        kind: str,
        config: Optional[RenderConfig] = None
    ) -> Path:
        """
        Render data to the specified artifact.

        Args:
            data: Finished table
            output: Output file path
            kind: Render kind (choropleth, pyramid, bar, table, arcs)
            config: Presentation settings

        Returns:
            Path of the written artifact

        Raises:
            RenderError: If the data cannot be rendered as requested.
        """
        config = config or RenderConfig()
        output_path = Path(output)

        kind_lower = kind.lower()
        renderers = {
            "choropleth": self._choropleth,
            "pyramid": self._pyramid,
            "bar": self._bar,
            "table": self._table,
            "arcs": self._arcs,
        }
        if kind_lower not in renderers:
            raise ValueError(f"Unsupported render kind: {kind}")

        if data is None or len(data) == 0:
            logger.error(f"Nothing to render for {kind_lower}")
            raise RenderError(f"Cannot render an empty table as {kind_lower}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        renderers[kind_lower](data, output_path, config)

        logger.info(f"Rendered {kind_lower} to {output_path}")
        return output_path

    def _choropleth(self, data: gpd.GeoDataFrame, path: Path, config: RenderConfig) -> None:
        """Static choropleth of `weight_column`."""
        if not isinstance(data, gpd.GeoDataFrame):
            raise RenderError("Choropleth requires a GeoDataFrame with geometries")
        try:
            geometry = data.geometry
        except AttributeError as e:
            raise RenderError("Choropleth input has no active geometry column") from e

        if not (geometry.notna() & ~geometry.is_empty).any():
            raise RenderError("Choropleth requires at least one non-empty geometry")

        self._require_columns(data, [config.weight_column])

        fig, ax = plt.subplots(figsize=(10, 8))
        data.plot(
            column=config.weight_column,
            cmap=config.palette,
            legend=True,
            ax=ax,
            missing_kwds={"color": "lightgrey"}
        )
        ax.set_axis_off()
        ax.set_title(config.title)
        self._save_figure(fig, path)

    def _pyramid(self, data: pd.DataFrame, path: Path, config: RenderConfig) -> None:
        """Static population pyramid; one category must already be negated."""
        self._require_columns(
            data, [config.weight_column, config.category_column, config.band_column]
        )

        bands = list(dict.fromkeys(data[config.band_column]))
        groups = list(data.groupby(config.category_column, sort=False))
        colors = plt.get_cmap(config.palette)(np.linspace(0.25, 0.75, len(groups)))

        fig, ax = plt.subplots(figsize=(10, 8))
        for color, (category, group) in zip(colors, groups):
            values = (
                group.groupby(config.band_column, sort=False)[config.weight_column]
                .sum()
                .reindex(bands)
                .fillna(0)
            )
            ax.barh(bands, values.values, color=color, label=str(category))

        ax.axvline(0, color="black", linewidth=0.8)
        ax.xaxis.set_major_formatter(FuncFormatter(lambda x, _: f"{abs(x):,.0f}"))
        ax.set_xlabel("Population")
        ax.set_title(config.title)
        ax.legend()
        self._save_figure(fig, path)

    def _bar(self, data: pd.DataFrame, path: Path, config: RenderConfig) -> None:
        """Static horizontal bar chart, largest value on top."""
        self._require_columns(data, [config.label_column, config.weight_column])

        ordered = data.sort_values(config.weight_column, kind="mergesort")
        positions = np.arange(len(ordered))
        colors = plt.get_cmap(config.palette)(np.linspace(0.3, 0.9, len(ordered)))

        fig, ax = plt.subplots(figsize=(10, max(4.0, 0.35 * len(ordered))))
        ax.barh(positions, ordered[config.weight_column].values, color=colors)
        ax.set_yticks(positions)
        ax.set_yticklabels(ordered[config.label_column].astype(str).tolist())
        ax.xaxis.set_major_formatter(FuncFormatter(lambda x, _: f"{x:,.0f}"))
        ax.set_title(config.title)
        self._save_figure(fig, path)

    def _table(self, data: pd.DataFrame, path: Path, config: RenderConfig) -> None:
        """Interactive table sorted by `sort_column`, one page per dropdown entry."""
        if config.page_size < 1:
            raise RenderError(f"Table page size must be positive, got {config.page_size}")

        frame = pd.DataFrame(data)
        geometry_cols = [
            col for col in frame.columns if isinstance(frame[col].dtype, GeometryDtype)
        ]
        frame = frame.drop(columns=geometry_cols)

        if config.sort_column:
            self._require_columns(frame, [config.sort_column])
            frame = frame.sort_values(
                config.sort_column, ascending=config.ascending, kind="mergesort"
            )

        columns = list(frame.columns)
        pages = [
            frame.iloc[start:start + config.page_size]
            for start in range(0, len(frame), config.page_size)
        ]

        def cell_values(page: pd.DataFrame) -> List[list]:
            return [page[col].astype(object).where(page[col].notna(), "").tolist() for col in columns]

        fig = go.Figure(data=[go.Table(
            header=dict(values=columns, fill_color="#d9e2ec", align="left"),
            cells=dict(values=cell_values(pages[0]), align="left")
        )])

        if len(pages) > 1:
            buttons = [
                dict(
                    label=f"Page {number} of {len(pages)}",
                    method="restyle",
                    args=[{"cells.values": [cell_values(page)]}]
                )
                for number, page in enumerate(pages, start=1)
            ]
            fig.update_layout(updatemenus=[dict(
                type="dropdown", buttons=buttons, x=0, xanchor="left", y=1.12, yanchor="top"
            )])

        fig.update_layout(title=config.title, margin=dict(l=10, r=10, t=80, b=10))
        fig.write_html(path, include_plotlyjs="cdn")

    def _arcs(self, data: pd.DataFrame, path: Path, config: RenderConfig) -> None:
        """Interactive arc map from `centroid1` to `centroid2`."""
        self._require_columns(data, ["centroid1", "centroid2", config.weight_column])
        if config.tooltip_column:
            self._require_columns(data, [config.tooltip_column])

        start = gpd.GeoSeries(data["centroid1"].values, index=data.index)
        end = gpd.GeoSeries(data["centroid2"].values, index=data.index)
        valid = start.notna() & end.notna() & ~start.is_empty & ~end.is_empty
        if not valid.any():
            raise RenderError("Arc map requires origin and destination centroids")

        rows = data.loc[valid.values]
        start, end = start[valid], end[valid]

        weights = pd.to_numeric(rows[config.weight_column], errors="coerce").fillna(0).to_numpy()
        widths = np.clip(weights, *self.ARC_WIDTH_RANGE)
        peak = weights.max() if weights.max() > 0 else 1.0
        colors = pc.sample_colorscale(pc.get_colorscale(config.palette), list(np.clip(weights / peak, 0.0, 1.0)))

        if config.tooltip_column:
            tooltips = rows[config.tooltip_column].astype(str).tolist()
        else:
            tooltips = [f"{w:,.1f}" for w in weights]

        use_mapbox = bool(self.mapbox_token)
        trace_cls = go.Scattermapbox if use_mapbox else go.Scattergeo

        fig = go.Figure()
        for origin, destination, width, color, tooltip in zip(start, end, widths, colors, tooltips):
            lons, lats = arc_path((origin.x, origin.y), (destination.x, destination.y))
            fig.add_trace(trace_cls(
                lon=lons,
                lat=lats,
                mode="lines",
                line=dict(width=float(width), color=color),
                hoverinfo="text",
                text=tooltip,
                showlegend=False
            ))

        endpoints = pd.concat([start, end])
        fig.add_trace(trace_cls(
            lon=endpoints.x.tolist(),
            lat=endpoints.y.tolist(),
            mode="markers",
            marker=dict(size=5, color="#333333"),
            hoverinfo="skip",
            showlegend=False
        ))

        if use_mapbox:
            fig.update_layout(mapbox=dict(
                accesstoken=self.mapbox_token,
                style="light",
                center=dict(lon=float(endpoints.x.mean()), lat=float(endpoints.y.mean())),
                zoom=3
            ))
        else:
            fig.update_geos(projection_type="albers usa", showland=True, landcolor="#f2f2f2")

        fig.update_layout(title=config.title, margin=dict(l=0, r=0, t=50, b=0))
        fig.write_html(path, include_plotlyjs="cdn")

    def _require_columns(self, data: pd.DataFrame, columns: Sequence[str]) -> None:
        """Raise RenderError naming any missing columns."""
        missing = [col for col in columns if col not in data.columns]
        if missing:
            logger.error(f"Render input missing columns: {missing}")
            raise RenderError(
                f"Missing required columns: {missing}. Available: {list(data.columns)}"
            )

    def _save_figure(self, fig: plt.Figure, path: Path) -> None:
        """Write a matplotlib figure and release it."""
        try:
            fig.savefig(path, dpi=150, bbox_inches="tight")
        finally:
            plt.close(fig)


def arc_path(
    start: Tuple[float, float],
    end: Tuple[float, float],
    segments: int = 24,
    height: float = 0.25
) -> Tuple[List[float], List[float]]:
    """
    Points along a curved arc between two lon/lat positions.

    The arc is a quadratic Bezier whose control point sits `height` times the
    chord length to the left of the chord midpoint.

    Returns:
        Longitudes and latitudes, including both endpoints
    """
    (x0, y0), (x1, y1) = start, end
    mid_x, mid_y = (x0 + x1) / 2, (y0 + y1) / 2
    ctrl_x = mid_x - (y1 - y0) * height
    ctrl_y = mid_y + (x1 - x0) * height

    t = np.linspace(0.0, 1.0, segments + 1)
    lons = (1 - t) ** 2 * x0 + 2 * (1 - t) * t * ctrl_x + t ** 2 * x1
    lats = (1 - t) ** 2 * y0 + 2 * (1 - t) * t * ctrl_y + t ** 2 * y1
    return lons.tolist(), lats.tolist()


class RenderError(Exception):
    """Raised when a table cannot be rendered (missing columns or geometry)."""
    pass
