"""
Tests for the raster surface model and window helpers.
"""

import warnings

import numpy as np
import pytest

from ntl_regions.qa import ConfigurationError
from ntl_regions.raster_utils import (
    check_bounds_overlap,
    compute_nodata_fraction,
    intersect_bounds,
    missing_mask,
    window_from_bounds,
)


class TestRasterSurface:
    """Geometry of the grid."""

    def test_bounds_and_resolution(self, grid_raster):
        assert grid_raster.bounds == pytest.approx((0.0, 0.0, 10.0, 10.0))
        assert grid_raster.resolution == (1.0, 1.0)
        assert grid_raster.size == 100

    def test_rejects_non_2d_data(self, make_raster):
        with pytest.raises(ConfigurationError):
            make_raster(np.zeros((2, 3, 4)))

    def test_crop_snaps_outward_to_whole_cells(self, grid_raster):
        cropped = grid_raster.crop((2.3, 4.1, 4.2, 6.0))
        # cols 2..4, rows for y in [4.1, 6.0] -> rows 4..5
        assert cropped.data.shape == (2, 3)
        assert cropped.bounds == pytest.approx((2.0, 4.0, 5.0, 6.0))
        assert cropped.data[0, 0] == grid_raster.data[4, 2]

    def test_crop_is_a_copy(self, grid_raster):
        cropped = grid_raster.crop((0, 0, 5, 5))
        assert not np.shares_memory(cropped.data, grid_raster.data)

    def test_data_is_read_only(self, make_raster):
        values = np.ones((3, 3))
        raster = make_raster(values)
        with pytest.raises(ValueError):
            raster.data[0, 0] = 5.0
        # the caller's array is not frozen
        values[0, 0] = 2.0
        assert raster.data[0, 0] == 2.0

    def test_crop_is_read_only(self, grid_raster):
        cropped = grid_raster.crop((0, 0, 5, 5))
        with pytest.raises(ValueError):
            cropped.data[:] = -1

    def test_crop_outside_raises(self, grid_raster):
        with pytest.raises(ConfigurationError):
            grid_raster.crop((20, 20, 30, 30))

    def test_crop_keeps_crs_and_nodata(self, make_raster):
        raster = make_raster(np.ones((4, 4)), nodata=-1)
        cropped = raster.crop((0, 0, 2, 2))
        assert cropped.nodata == -1
        assert cropped.crs == raster.crs


class TestWindowFromBounds:
    """Whole-cell windows."""

    def test_exact_cell_edges(self, grid_raster):
        window = window_from_bounds(grid_raster.transform, 10, 10, (2, 3, 5, 7))
        assert (window.col_off, window.row_off, window.width, window.height) == (2, 3, 3, 4)

    def test_clipped_to_grid(self, grid_raster):
        window = window_from_bounds(grid_raster.transform, 10, 10, (-5, -5, 3, 3))
        assert (window.col_off, window.row_off) == (0, 7)
        assert (window.width, window.height) == (3, 3)

    def test_outside_grid_is_none(self, grid_raster):
        assert window_from_bounds(grid_raster.transform, 10, 10, (11, 11, 12, 12)) is None

    def test_zero_width_on_edge_is_none(self, grid_raster):
        assert window_from_bounds(grid_raster.transform, 10, 10, (3, 3, 3, 5)) is None

    def test_sliver_within_snap_tolerance_gets_its_cell(self, grid_raster):
        bounds = (3.0000000001, 2, 3.0000000005, 3)
        window = window_from_bounds(grid_raster.transform, 10, 10, bounds)
        assert (window.col_off, window.row_off, window.width, window.height) == (3, 7, 1, 1)

    def test_sliver_crop_reads_one_column(self, grid_raster):
        cropped = grid_raster.crop((6.0000000001, 0, 6.0000000004, 10))
        assert cropped.data.shape == (10, 1)

    def test_no_affine_warnings_from_window_math(self, grid_raster):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            window_from_bounds(grid_raster.transform, 10, 10, (2.5, 3.5, 5.5, 7.5))
        ours = [w for w in caught if w.filename.endswith("raster_utils.py")]
        assert ours == []


class TestMissingValues:
    """Nodata sentinel and NaN handling."""

    def test_sentinel(self):
        values = np.array([5, -9999, 3])
        assert missing_mask(values, -9999).tolist() == [False, True, False]

    def test_nan_always_missing_for_floats(self):
        values = np.array([np.nan, 1.0, 2.0])
        assert missing_mask(values, None).tolist() == [True, False, False]

    def test_nan_sentinel(self):
        values = np.array([np.nan, 1.0])
        assert missing_mask(values, np.nan).tolist() == [True, False]

    def test_zero_is_not_missing(self):
        values = np.array([0.0, 0.0])
        assert not missing_mask(values, None).any()

    def test_nodata_fraction(self, make_raster):
        raster = make_raster(np.array([[1.0, np.nan], [-1.0, 2.0]]), nodata=-1.0)
        assert compute_nodata_fraction(raster) == pytest.approx(0.5)


class TestBoundsOverlap:
    """Rectangle intersection."""

    def test_overlap_returned(self):
        assert check_bounds_overlap((0, 0, 10, 10), (5, 5, 20, 20)) == (5, 5, 10, 10)

    def test_disjoint_raises(self):
        with pytest.raises(ConfigurationError, match="Zero-size"):
            check_bounds_overlap((0, 0, 10, 10), (11, 11, 20, 20))

    def test_touching_edge_is_zero_size(self):
        assert intersect_bounds((0, 0, 10, 10), (10, 0, 20, 10)) is None
