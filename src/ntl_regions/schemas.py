"""
Schema checks for region collections and aggregation outputs.

Schema drift becomes an immediate local failure:
- Region ids are unique and non-null on input.
- The join-ready output has exactly one row per region id, non-negative
  pixel counts and a float total column.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import geopandas as gpd
import pandas as pd

from ntl_regions.qa import ConfigurationError, assert_crs_not_none


class SchemaError(ConfigurationError):
    """Raised when a table does not match its schema."""
    pass


DTYPE_CHECKS: Dict[str, Callable[[pd.Series], bool]] = {
    "int64": pd.api.types.is_integer_dtype,
    "float64": pd.api.types.is_float_dtype,
}


@dataclass
class ColumnSpec:
    name: str
    dtype: Optional[str] = None  # "int64", "float64" or "geometry"
    nullable: bool = True
    unique: bool = False
    min_value: Optional[float] = None


@dataclass
class Schema:
    name: str
    columns: List[ColumnSpec]
    row_count: Optional[int] = None  # exact, when known
    min_rows: int = 0


def region_collection_schema(id_col: str = "region_id", geometry_col: str = "geometry") -> Schema:
    """Input regions: unique, non-null ids and the active geometry column."""
    return Schema(
        name="region_collection",
        columns=[
            ColumnSpec(id_col, nullable=False, unique=True),
            ColumnSpec(geometry_col, dtype="geometry"),
        ],
        min_rows=1,
    )


def aggregation_result_schema(
    id_col: str = "region_id",
    value_col: str = "ntl_sum",
    row_count: Optional[int] = None,
) -> Schema:
    """Join-ready output: one row per region id."""
    return Schema(
        name="aggregation_result",
        columns=[
            ColumnSpec(id_col, nullable=False, unique=True),
            ColumnSpec(value_col, dtype="float64"),
            ColumnSpec("pixel_count", dtype="int64", nullable=False, min_value=0),
            ColumnSpec("valid_pixel_count", dtype="int64", nullable=False, min_value=0),
        ],
        row_count=row_count,
    )


def validate_column(df: pd.DataFrame, spec: ColumnSpec) -> List[str]:
    """Problems found in one column (empty list if it conforms)."""
    if spec.name not in df.columns:
        return [f"Missing column: {spec.name}"]

    col = df[spec.name]
    problems = []

    if spec.dtype == "geometry":
        if not isinstance(df, gpd.GeoDataFrame):
            problems.append(f"Column {spec.name}: geometry requires a GeoDataFrame")
    elif spec.dtype is not None and not DTYPE_CHECKS[spec.dtype](col):
        problems.append(f"Column {spec.name}: expected {spec.dtype}, got {col.dtype}")

    n_missing = int(col.isna().sum())
    if not spec.nullable and n_missing:
        problems.append(f"Column {spec.name}: {n_missing} null values")

    if spec.unique:
        dups = col[col.duplicated()].unique()[:5]
        if len(dups):
            problems.append(f"Column {spec.name}: duplicate values {list(dups)}")

    if spec.min_value is not None and (col.dropna() < spec.min_value).any():
        problems.append(f"Column {spec.name}: values below {spec.min_value}")

    return problems


def validate_schema(
    df: Union[pd.DataFrame, gpd.GeoDataFrame],
    schema: Schema,
    context: str = "",
    raise_on_error: bool = True,
) -> List[str]:
    """
    Validate a table against a schema.

    Args:
        df: Table to check
        schema: Expected layout
        context: Added to the error message
        raise_on_error: Raise instead of returning the problems

    Returns:
        List of problems (empty if valid)

    Raises:
        SchemaError: If raise_on_error and any problem was found
    """
    problems = []
    if schema.row_count is not None and len(df) != schema.row_count:
        problems.append(f"Expected {schema.row_count} rows, got {len(df)}")
    if len(df) < schema.min_rows:
        problems.append(f"Expected at least {schema.min_rows} rows, got {len(df)}")
    for spec in schema.columns:
        problems.extend(validate_column(df, spec))

    if problems and raise_on_error:
        where = f" ({context})" if context else ""
        raise SchemaError(f"'{schema.name}' schema check failed{where}:\n" + "\n".join(problems))
    return problems


def validate_region_collection(
    regions: gpd.GeoDataFrame,
    id_col: str = "region_id",
    context: str = "",
) -> None:
    """
    Validate a region collection before any computation.

    Raises:
        SchemaError: If ids are missing, null or duplicated, the table is empty,
            or no active geometry column is set
        ConfigurationError: If the collection has no CRS
    """
    if not isinstance(regions, gpd.GeoDataFrame):
        raise SchemaError(f"Regions must be a GeoDataFrame, got {type(regions).__name__}")
    geometry_col = regions.active_geometry_name
    if geometry_col is None:
        raise SchemaError(f"Regions have no active geometry column ({context or 'region collection'})")
    validate_schema(regions, region_collection_schema(id_col, geometry_col), context=context)
    assert_crs_not_none(regions.crs, context or "region collection")


def validate_merge(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: str,
    how: str = "left",
    context: str = "",
) -> pd.DataFrame:
    """
    One-to-one merge; duplicate keys on either side raise.

    Raises:
        SchemaError: If the merge is not one-to-one
    """
    try:
        return left.merge(right, on=on, how=how, validate="one_to_one")
    except pd.errors.MergeError as e:
        raise SchemaError(f"Merge validation failed ({context}): {e}") from e
