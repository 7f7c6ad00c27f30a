"""
Region aggregation: per-part sums re-aggregated to parent regions.

- Missing cells (nodata sentinel or NaN) are left out of sums and counts
- A part covering no cell contributes exactly 0
- Every input region id gets exactly one total; regions with no covered
  cell are zero-filled and reported, never dropped
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from ntl_regions.geometry import PARENT_ID_COL, PART_ID_COL
from ntl_regions.indexing import CellIndex
from ntl_regions.logging_utils import log_event
from ntl_regions.qa import EmptyCoverageWarning
from ntl_regions.raster_utils import RasterSurface, missing_mask

PART_SUM_COLUMNS = ["sum", "pixel_count", "valid_pixel_count"]


@dataclass
class AggregationResult:
    """
    Per-region totals plus diagnostics.

    Attributes:
        totals: region id -> sum of valid cell values (NaN only for failed regions)
        pixel_counts: region id -> cells covered by any part
        valid_pixel_counts: region id -> covered cells that were not missing
        empty_coverage: ids of regions covering no cell (zero-filled)
        missing_parts: ids of regions that decomposed into no part (zero-filled)
        failed: id -> error message, bounded path in best-effort mode only
        id_col: name of the region id column
    """
    totals: pd.Series
    pixel_counts: pd.Series
    valid_pixel_counts: pd.Series
    empty_coverage: List[Any] = field(default_factory=list)
    missing_parts: List[Any] = field(default_factory=list)
    failed: Dict[Any, str] = field(default_factory=dict)
    id_col: str = "region_id"

    def __len__(self) -> int:
        return len(self.totals)

    def to_dict(self) -> Dict[Any, float]:
        return self.totals.to_dict()

    def to_frame(self, value_col: str = "ntl_sum") -> pd.DataFrame:
        """Join-ready table, one row per region id."""
        return pd.DataFrame({
            self.id_col: self.totals.index.to_numpy(),
            value_col: self.totals.to_numpy(dtype=np.float64),
            "pixel_count": self.pixel_counts.to_numpy(dtype=np.int64),
            "valid_pixel_count": self.valid_pixel_counts.to_numpy(dtype=np.int64),
        })

    def expand_to(self, region_ids: Sequence[Any]) -> "AggregationResult":
        """
        Reindex onto a superset of region ids.

        Ids not present yet (e.g. dropped by clipping) get a zero total and
        are added to empty_coverage.
        """
        index = pd.Index(list(region_ids), name=self.id_col)
        added = index[~index.isin(self.totals.index)].tolist()
        return AggregationResult(
            totals=self.totals.reindex(index, fill_value=0.0).astype("float64"),
            pixel_counts=self.pixel_counts.reindex(index, fill_value=0).astype("int64"),
            valid_pixel_counts=self.valid_pixel_counts.reindex(index, fill_value=0).astype("int64"),
            empty_coverage=list(self.empty_coverage) + added,
            missing_parts=list(self.missing_parts),
            failed=dict(self.failed),
            id_col=self.id_col,
        )

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "empty_coverage": list(self.empty_coverage),
            "missing_parts": list(self.missing_parts),
            "failed": dict(self.failed),
        }


def sum_cells(
    flat_values: np.ndarray,
    cells: np.ndarray,
    nodata: Optional[float],
) -> Tuple[float, int, int]:
    """
    Sum raster values at linear cell indices, skipping missing cells.

    Args:
        flat_values: Raveled raster data
        cells: Linear cell indices
        nodata: Missing-value sentinel

    Returns:
        Tuple of (sum, covered cell count, valid cell count)
    """
    if cells.size == 0:
        return 0.0, 0, 0

    values = flat_values[cells]
    valid = ~missing_mask(values, nodata)
    total = float(values[valid].sum(dtype=np.float64))
    return total, int(cells.size), int(valid.sum())


def part_sums(
    raster: RasterSurface,
    cell_index: CellIndex,
    parts: gpd.GeoDataFrame,
) -> pd.DataFrame:
    """
    Sum every part's cells.

    Returns:
        DataFrame with part_id, parent_region_id, sum, pixel_count,
        valid_pixel_count (one row per part)
    """
    flat_values = raster.data.ravel()
    rows = []
    for part_id, parent_id in zip(parts[PART_ID_COL], parts[PARENT_ID_COL]):
        cells = cell_index.get(int(part_id))
        if cells is None:
            raise KeyError(f"Part {part_id} missing from cell index")
        total, n_cells, n_valid = sum_cells(flat_values, cells, raster.nodata)
        rows.append((int(part_id), parent_id, total, n_cells, n_valid))

    table = pd.DataFrame(rows, columns=[PART_ID_COL, PARENT_ID_COL] + PART_SUM_COLUMNS)
    return table.astype({"sum": "float64", "pixel_count": "int64", "valid_pixel_count": "int64"})


def reconcile_totals(
    part_table: pd.DataFrame,
    region_ids: Sequence[Any],
    id_col: str = "region_id",
    failed: Optional[Dict[Any, str]] = None,
    logger=None,
) -> AggregationResult:
    """
    Re-aggregate part sums to parent regions and zero-fill the gaps.

    Args:
        part_table: Output of part_sums (may cover several passes)
        region_ids: Every region id that must appear in the result
        id_col: Region id column name
        failed: Regions that could not be processed (total NaN)
        logger: Optional JSONLLogger

    Returns:
        AggregationResult indexed by region_ids, in their order
    """
    failed = dict(failed or {})
    index = pd.Index(list(region_ids), name=id_col)

    grouped = part_table.groupby(PARENT_ID_COL, sort=False)[PART_SUM_COLUMNS].sum()

    totals = grouped["sum"].reindex(index, fill_value=0.0).astype("float64")
    pixel_counts = grouped["pixel_count"].reindex(index, fill_value=0).astype("int64")
    valid_counts = grouped["valid_pixel_count"].reindex(index, fill_value=0).astype("int64")

    if failed:
        totals[index.isin(list(failed))] = np.nan

    has_parts = index.isin(grouped.index)
    not_failed = ~index.isin(list(failed))

    missing_parts = index[~has_parts & not_failed].tolist()
    if missing_parts:
        log_event(
            logger,
            "warning",
            f"{len(missing_parts)} regions have no polygon parts; zero-filled",
            extra={"missing_parts": missing_parts},
        )

    empty_coverage = index[(pixel_counts.to_numpy() == 0) & not_failed].tolist()
    if empty_coverage:
        msg = f"{len(empty_coverage)} regions cover no raster cell; zero-filled"
        warnings.warn(f"{msg}: {empty_coverage[:10]}", EmptyCoverageWarning, stacklevel=2)
        log_event(logger, "warning", msg, extra={"empty_coverage": empty_coverage})

    return AggregationResult(
        totals=totals,
        pixel_counts=pixel_counts,
        valid_pixel_counts=valid_counts,
        empty_coverage=empty_coverage,
        missing_parts=missing_parts,
        failed=failed,
        id_col=id_col,
    )


def aggregate(
    raster: RasterSurface,
    cell_index: CellIndex,
    parts: gpd.GeoDataFrame,
    regions: gpd.GeoDataFrame,
    id_col: str = "region_id",
    logger=None,
) -> AggregationResult:
    """
    Sum raster values per region from a prebuilt cell index.

    Args:
        raster: Raster the cell index was built on
        cell_index: Output of indexing.index_cells
        parts: Output of geometry.decompose
        regions: Region collection whose ids must all appear in the result
        id_col: Region id column
        logger: Optional JSONLLogger

    Returns:
        AggregationResult with one total per region id
    """
    table = part_sums(raster, cell_index, parts)
    return reconcile_totals(table, regions[id_col].tolist(), id_col=id_col, logger=logger)
