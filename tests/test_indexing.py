"""
Tests for cell indexing of simple polygon parts.
"""

import numpy as np
import shapely
from shapely.geometry import Polygon, box

from ntl_regions.geometry import decompose
from ntl_regions.indexing import index_cells, index_part


class TestIndexPart:
    """Cell membership of a single polygon."""

    def test_square_covers_expected_cells(self, grid_raster):
        # x in [2, 4], y in [7, 9] -> rows 1..2, cols 2..3
        cells = index_part(grid_raster, box(2, 7, 4, 9))
        assert cells.tolist() == [12, 13, 22, 23]

    def test_linear_index_matches_values(self, grid_raster):
        # grid value = 10 * row + col = linear index
        cells = index_part(grid_raster, box(5.2, 0.1, 8.9, 3.7))
        np.testing.assert_array_equal(grid_raster.data.ravel()[cells], cells)

    def test_cells_sorted_int64(self, grid_raster):
        cells = index_part(grid_raster, Polygon([(0.2, 0.2), (9.8, 0.2), (5, 9.8)]))
        assert cells.dtype == np.int64
        assert (np.diff(cells) > 0).all()

    def test_centre_rule_excludes_uncovered_centres(self, grid_raster):
        # inside a single cell but away from its centre (3.5, 6.5)
        assert index_part(grid_raster, box(3.1, 6.1, 3.4, 6.4)).size == 0

    def test_all_touched_includes_touched_cells(self, grid_raster):
        cells = index_part(grid_raster, box(3.1, 6.1, 3.4, 6.4), all_touched=True)
        assert cells.tolist() == [33]

    def test_outside_raster_is_empty(self, grid_raster):
        assert index_part(grid_raster, box(20, 20, 22, 22)).size == 0

    def test_partially_outside_clipped_to_grid(self, grid_raster):
        cells = index_part(grid_raster, box(8, -3, 13, 1))
        assert cells.tolist() == [98, 99]

    def test_empty_and_null_geometry(self, grid_raster):
        assert index_part(grid_raster, Polygon()).size == 0
        assert index_part(grid_raster, None).size == 0


class TestIndexCells:
    """Mapping over a part collection."""

    def test_keys_are_part_ids(self, grid_raster, make_regions):
        parts = decompose(make_regions([box(0, 0, 2, 2), box(20, 20, 21, 21)]))
        cell_index = index_cells(grid_raster, parts)

        assert set(cell_index) == {0, 1}
        assert cell_index[0].size == 4
        assert cell_index[1].size == 0

    def test_independent_of_part_order(self, noisy_raster, mixed_regions):
        parts = decompose(mixed_regions)
        forward = index_cells(noisy_raster, parts)
        backward = index_cells(noisy_raster, parts.iloc[::-1])

        assert forward.keys() == backward.keys()
        for part_id, cells in forward.items():
            np.testing.assert_array_equal(cells, backward[part_id])

    def test_repeatable(self, noisy_raster, mixed_regions):
        parts = decompose(mixed_regions)
        first = index_cells(noisy_raster, parts)
        second = index_cells(noisy_raster, parts)
        for part_id in first:
            np.testing.assert_array_equal(first[part_id], second[part_id])

    def test_matches_full_grid_centre_test(self, noisy_raster, mixed_regions):
        """Window-bounded rasterisation agrees with a brute-force centre test."""
        parts = decompose(mixed_regions)
        cell_index = index_cells(noisy_raster, parts)

        rows, cols = np.indices(noisy_raster.data.shape)
        xs = cols.ravel() + 0.5
        ys = noisy_raster.height - rows.ravel() - 0.5
        for part_id, geom in zip(parts["part_id"], parts.geometry):
            expected = np.flatnonzero(shapely.contains_xy(geom, xs, ys))
            np.testing.assert_array_equal(cell_index[part_id], expected)
