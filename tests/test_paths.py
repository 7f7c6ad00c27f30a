"""
Tests for the paths module.

Project root detection and canonical locations.
"""

import pytest

from ntl_regions.paths import (
    CONFIG_DIR,
    LOGS_DIR,
    PARAMS_FILE,
    PROJECT_ROOT,
    find_project_root,
)


class TestProjectRoot:
    """Tests for project root detection."""

    def test_project_root_exists(self):
        """PROJECT_ROOT should be a valid directory."""
        assert PROJECT_ROOT.exists()
        assert PROJECT_ROOT.is_dir()

    def test_project_root_marker_exists(self):
        """The .project-root marker file should exist."""
        marker = PROJECT_ROOT / ".project-root"
        assert marker.exists(), "Missing .project-root marker file"

    def test_find_project_root_from_subdir(self):
        """find_project_root should work from any subdirectory."""
        subdir = PROJECT_ROOT / "src" / "ntl_regions"
        assert find_project_root(subdir) == PROJECT_ROOT

    def test_find_project_root_from_marked_dir(self, tmp_path):
        (tmp_path / ".project-root").touch()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path


class TestCanonicalPaths:
    """Tests for canonical path definitions."""

    def test_logs_dir_at_root(self):
        assert LOGS_DIR == PROJECT_ROOT / "logs"

    def test_params_file_in_config_dir(self):
        assert PARAMS_FILE.parent == CONFIG_DIR
        assert PARAMS_FILE.exists()

    def test_all_paths_under_project_root(self):
        for path in [CONFIG_DIR, PARAMS_FILE, LOGS_DIR]:
            assert PROJECT_ROOT in path.parents
