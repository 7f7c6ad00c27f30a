"""
Readers for rasters, region layers and config, plus atomic writers.

Every write goes to a temp file in the target directory and is renamed
over the target only once complete.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import geopandas as gpd
import pandas as pd
import rasterio
import yaml

from ntl_regions.raster_utils import RasterSurface

PathLike = Union[str, Path]

TABLE_WRITERS = {
    ".csv": pd.DataFrame.to_csv,
    ".parquet": pd.DataFrame.to_parquet,
}


@contextmanager
def staged_path(target_path: PathLike, suffix: Optional[str] = None) -> Iterator[Path]:
    """
    Yield a temp path next to target_path; rename it onto the target on success.

    On error the temp file is removed and the target is left as it was.
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        suffix=suffix or target_path.suffix or ".tmp",
        prefix=f".{target_path.stem}_",
        dir=target_path.parent,
    )
    os.close(fd)
    temp_path = Path(name)

    try:
        yield temp_path
        temp_path.replace(target_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


@contextmanager
def atomic_write(target_path: PathLike, mode: str = "w", suffix: Optional[str] = None):
    """
    Open a staged file for writing.

    Example:
        with atomic_write("totals.json") as f:
            f.write("{}")
    """
    with staged_path(target_path, suffix) as temp_path:
        with open(temp_path, mode) as f:
            yield f


def atomic_write_df(df: pd.DataFrame, target_path: PathLike, **kwargs) -> None:
    """
    Write a DataFrame as CSV or Parquet, chosen by extension.

    Raises:
        ValueError: For any other extension
    """
    target_path = Path(target_path)
    writer = TABLE_WRITERS.get(target_path.suffix.lower())
    if writer is None:
        raise ValueError(f"Unsupported format: {target_path.suffix}")

    with staged_path(target_path) as temp_path:
        writer(df, temp_path, **kwargs)


def atomic_write_json(data: Any, target_path: PathLike, **kwargs) -> None:
    kwargs.setdefault("indent", 2)
    kwargs.setdefault("default", str)
    with atomic_write(target_path, suffix=".json") as f:
        json.dump(data, f, **kwargs)


def read_yaml(path: PathLike) -> dict:
    """Parsed YAML mapping; an empty file gives {}."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def read_json(path: PathLike) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_gdf(path: PathLike, **kwargs) -> gpd.GeoDataFrame:
    """Region layer from GeoParquet or any format geopandas.read_file accepts."""
    path = Path(path)
    if path.suffix.lower() == ".parquet":
        return gpd.read_parquet(path, **kwargs)
    return gpd.read_file(path, **kwargs)


def read_raster(
    path: PathLike,
    band: int = 1,
    nodata: Optional[float] = None,
) -> RasterSurface:
    """
    Read one band of a raster file into memory.

    Args:
        path: GeoTIFF or anything else GDAL reads
        band: 1-based band index
        nodata: Sentinel overriding the file's nodata tag

    Returns:
        RasterSurface carrying the file's CRS, transform and nodata
    """
    with rasterio.open(Path(path)) as src:
        return RasterSurface(
            data=src.read(band),
            transform=src.transform,
            crs=src.crs,
            nodata=nodata if nodata is not None else src.nodata,
        )
