"""
One parameterised aggregation run per administrative level.

    raster + regions
      -> align (CRS, clip, crop)
      -> validate_and_repair
      -> bulk: decompose + index_cells + aggregate
         bounded: aggregate_bounded
      -> zero-fill regions lost to clipping
      -> merge totals onto the input attribute table

Country, NUTS2, NUTS3 or state levels all go through run_aggregation with
their own region table and optional bbox.
"""

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd

from ntl_regions.aggregation import AggregationResult, aggregate
from ntl_regions.alignment import align
from ntl_regions.batch import ProgressCallback, aggregate_bounded
from ntl_regions.config import (
    DEFAULT_AGGREGATION_CONFIG,
    config_digest,
    load_aggregation_config,
    validate_aggregation_config,
)
from ntl_regions.geometry import decompose, validate_and_repair
from ntl_regions.indexing import index_cells
from ntl_regions.io_utils import atomic_write_df, atomic_write_json
from ntl_regions.logging_utils import log_event
from ntl_regions.qa import (
    EmptyCoverageWarning,
    GeometryRepairFailure,
    summarize_diagnostics,
)
from ntl_regions.raster_utils import (
    RasterSurface,
    compute_nodata_fraction,
    cross_check_totals,
    log_raster_qa,
)
from ntl_regions.schemas import (
    SchemaError,
    aggregation_result_schema,
    validate_merge,
    validate_region_collection,
    validate_schema,
)


@dataclass
class PipelineResult:
    """Output of one run_aggregation call."""
    regions: gpd.GeoDataFrame
    result: AggregationResult
    strategy: str
    value_col: str
    repair_failures: List[GeometryRepairFailure] = field(default_factory=list)
    outside_extent: List[Any] = field(default_factory=list)
    cross_check_mismatches: List[Any] = field(default_factory=list)

    def diagnostics(self) -> Dict[str, Any]:
        out = self.result.diagnostics()
        out.update({
            "strategy": self.strategy,
            "outside_extent": list(self.outside_extent),
            "repair_failures": [
                {"region_id": f.region_id, "reason": f.reason} for f in self.repair_failures
            ],
            "cross_check_mismatches": list(self.cross_check_mismatches),
        })
        return out


def choose_strategy(n_cells: int, strategy: str, bulk_max_cells: int) -> str:
    """Resolve 'auto' to 'bulk' or 'bounded' from the raster size."""
    if strategy != "auto":
        return strategy
    return "bulk" if n_cells <= bulk_max_cells else "bounded"


def resolve_config(
    config: Optional[Dict[str, Any]] = None,
    **overrides,
) -> Dict[str, Any]:
    """
    Effective run config.

    Without an explicit config dict, configs/params.yml is read. Keyword
    overrides that are not None win in both cases.
    """
    if config is None:
        return load_aggregation_config(overrides=overrides)

    merged = dict(DEFAULT_AGGREGATION_CONFIG)
    merged.update(config)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return validate_aggregation_config(merged)


def merge_totals(
    table: pd.DataFrame,
    result: AggregationResult,
    on: Optional[str] = None,
    value_col: str = "ntl_sum",
) -> pd.DataFrame:
    """
    Left-join region totals onto an attribute table.

    Only the total column is added. Pixel counts stay in result.to_frame(),
    which is what save_result writes.

    Args:
        table: Caller table, e.g. the input regions or external statistics
        result: Aggregation output
        on: Key column in table holding region ids (default: result.id_col)
        value_col: Name of the added total column

    Returns:
        Copy of table with value_col added

    Raises:
        SchemaError: Column clash or duplicate keys
    """
    on = on or result.id_col
    frame = result.to_frame(value_col)[[result.id_col, value_col]]
    frame = frame.rename(columns={result.id_col: on})

    if value_col in table.columns:
        raise SchemaError(f"Columns already present in table: {[value_col]}")

    return validate_merge(table, frame, on=on, how="left", context="merge_totals")


def run_aggregation(
    raster: RasterSurface,
    regions: gpd.GeoDataFrame,
    id_col: Optional[str] = None,
    bbox: Optional[Sequence[float]] = None,
    strategy: Optional[str] = None,
    max_regions_per_pass: Optional[int] = None,
    best_effort: Optional[bool] = None,
    all_touched: Optional[bool] = None,
    value_col: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
    progress: Optional[ProgressCallback] = None,
    logger=None,
) -> PipelineResult:
    """
    Sum raster values per region for one administrative level.

    Arguments left as None fall back to the config (params.yml or the
    `config` dict).

    Args:
        raster: Night-time light surface
        regions: Region table with id column and geometry
        id_col: Region id column
        bbox: Optional (minx, miny, maxx, maxy) in raster CRS
        strategy: 'auto', 'bulk' or 'bounded'
        max_regions_per_pass: Pass size of the bounded path
        best_effort: Bounded path records failures instead of aborting
        all_touched: Count every touched cell instead of centres only
        value_col: Name of the total column in the output table
        config: Explicit config dict instead of params.yml
        progress: Bounded path progress callback
        logger: Optional JSONLLogger

    Returns:
        PipelineResult; every input region id is present in result and regions

    Raises:
        ConfigurationError: Invalid inputs or config (nothing is computed)
        PerRegionProcessingFailure: Bounded path failure without best_effort
    """
    cfg = resolve_config(
        config,
        id_col=id_col,
        strategy=strategy,
        max_regions_per_pass=max_regions_per_pass,
        best_effort=best_effort,
        all_touched=all_touched,
        value_col=value_col,
    )
    if logger is not None:
        logger.log_config(cfg, config_digest(cfg))

    id_col = cfg["id_col"]
    value_col = cfg["value_col"]
    all_touched = bool(cfg["all_touched"])

    validate_region_collection(regions, id_col, context="run_aggregation input")
    if value_col in regions.columns:
        raise SchemaError(f"Regions already have a '{value_col}' column")
    input_ids = regions[id_col].tolist()

    aligned_raster, aligned = align(raster, regions, bbox=bbox, id_col=id_col, logger=logger)
    kept = set(aligned[id_col])
    outside_extent = [rid for rid in input_ids if rid not in kept]

    repaired, repair_failures = validate_and_repair(aligned, id_col=id_col, logger=logger)

    chosen = choose_strategy(aligned_raster.size, cfg["strategy"], int(cfg["bulk_max_cells"]))
    log_event(
        logger,
        "info",
        f"Aggregating {len(repaired)} regions with the {chosen} strategy",
        extra={"raster_cells": aligned_raster.size, "nodata_fraction": compute_nodata_fraction(aligned_raster)},
    )

    if chosen == "bulk":
        parts = decompose(repaired, id_col=id_col)
        cell_index = index_cells(aligned_raster, parts, all_touched=all_touched, logger=logger)
        result = aggregate(aligned_raster, cell_index, parts, repaired, id_col=id_col, logger=logger)
        del cell_index, parts
    else:
        result = aggregate_bounded(
            aligned_raster,
            repaired,
            max_regions_per_pass=int(cfg["max_regions_per_pass"]),
            id_col=id_col,
            best_effort=bool(cfg["best_effort"]),
            all_touched=all_touched,
            progress=progress,
            logger=logger,
        )

    if outside_extent:
        warnings.warn(
            f"{len(outside_extent)} regions lie outside the raster extent; zero-filled",
            EmptyCoverageWarning,
            stacklevel=2,
        )
    result = result.expand_to(input_ids)

    mismatches: List[Any] = []
    if cfg["cross_check"]:
        mismatches = cross_check_totals(
            aligned_raster,
            repaired,
            result.to_dict(),
            id_col=id_col,
            all_touched=all_touched,
            rtol=float(cfg["cross_check_rtol"]),
        )
        if mismatches:
            log_event(
                logger,
                "warning",
                f"{len(mismatches)} regions disagree with rasterstats",
                extra={"mismatches": mismatches},
            )

    frame = result.to_frame(value_col)
    validate_schema(
        frame,
        aggregation_result_schema(id_col, value_col, row_count=len(input_ids)),
        context="aggregation output",
    )

    pixel_counts = result.pixel_counts.to_numpy()
    log_raster_qa({
        "region_count": len(input_ids),
        "total_pixels": int(pixel_counts.sum()),
        "min_pixels_per_region": int(pixel_counts.min()),
        "max_pixels_per_region": int(pixel_counts.max()),
        "mean_pixels_per_region": float(np.mean(pixel_counts)),
        "zero_pixel_regions": int((pixel_counts == 0).sum()),
    }, logger)

    pipeline_result = PipelineResult(
        regions=merge_totals(regions, result, on=id_col, value_col=value_col),
        result=result,
        strategy=chosen,
        value_col=value_col,
        repair_failures=repair_failures,
        outside_extent=outside_extent,
        cross_check_mismatches=mismatches,
    )

    if logger is not None:
        logger.log_metrics(summarize_diagnostics(
            result.empty_coverage, result.missing_parts, result.failed, repair_failures,
        ))
        logger.log_diagnostics(pipeline_result.diagnostics())

    return pipeline_result


def save_result(
    pipeline_result: PipelineResult,
    target_path: Union[str, Path],
) -> Path:
    """
    Write the join-ready totals table and a diagnostics sidecar.

    Args:
        pipeline_result: Output of run_aggregation
        target_path: .csv or .parquet destination

    Returns:
        Path of the diagnostics JSON (<stem>_diagnostics.json)
    """
    target_path = Path(target_path)
    frame = pipeline_result.result.to_frame(pipeline_result.value_col)
    atomic_write_df(frame, target_path, index=False)

    sidecar = target_path.with_name(f"{target_path.stem}_diagnostics.json")
    atomic_write_json(pipeline_result.diagnostics(), sidecar)
    return sidecar
