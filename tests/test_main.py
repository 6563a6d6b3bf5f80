"""
Tests for the command line entry point and logging setup
"""

import logging
import sys

import pytest
import numpy as np

from volumetric_measure import main as cli
from volumetric_measure.utils.logging_config import setup_logging, PerformanceTimer


class TestLogging:
    """Test suite for logging configuration."""

    def test_setup_logging_level(self):
        """Test root logger level and handler replacement."""
        root = setup_logging("DEBUG")
        assert root.level == logging.DEBUG
        handler_count = len(root.handlers)

        setup_logging("WARNING")
        assert root.level == logging.WARNING
        assert len(root.handlers) == handler_count

    def test_setup_logging_file(self, tmp_path):
        """Test that a log file receives messages."""
        log_file = tmp_path / "logs" / "run.log"
        setup_logging("INFO", log_file=log_file)
        logging.getLogger("volumetric_measure.test").info("written to file")

        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "written to file" in log_file.read_text()

    def test_invalid_level(self):
        """Test error handling for unknown level names."""
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging("VERBOSE")

    def test_performance_timer(self, caplog):
        """Test elapsed time measurement and debug output."""
        logger = logging.getLogger("volumetric_measure.timer")
        with caplog.at_level(logging.DEBUG, logger="volumetric_measure.timer"):
            with PerformanceTimer(logger, "unit of work") as timer:
                sum(range(1000))

        assert timer.elapsed >= 0.0
        assert "unit of work completed" in caplog.text


class TestCommandLine:
    """Test suite for the volumetric-measure command."""

    @pytest.fixture
    def xyz_file(self, tmp_path, box_points):
        """Text point cloud with a confidence column."""
        path = tmp_path / "object.xyz"
        rows = np.column_stack([box_points, np.full(len(box_points), 0.9)])
        np.savetxt(path, rows, header="x y z confidence")
        return path

    def run(self, monkeypatch, *args):
        monkeypatch.setattr(sys, "argv", ["volumetric-measure", *args])
        return cli.main()

    def test_load_points_text(self, xyz_file):
        """Test text loading with comments and confidences."""
        points, confidences = cli.load_points(xyz_file)
        assert points.shape == (500, 3)
        assert np.allclose(confidences, 0.9)

    def test_load_points_npy(self, tmp_path, box_points):
        """Test NumPy array loading."""
        path = tmp_path / "object.npy"
        np.save(path, box_points)
        points, confidences = cli.load_points(path)
        assert np.allclose(points, box_points)
        assert confidences is None

    def test_load_points_bad_columns(self, tmp_path):
        """Test error handling for malformed rows."""
        path = tmp_path / "bad.xyz"
        path.write_text("1, 2\n3, 4\n")
        with pytest.raises(ValueError, match="columns"):
            cli.load_points(path)

    def test_measure_box(self, monkeypatch, capsys, xyz_file):
        """Test a full run with the default method."""
        assert self.run(monkeypatch, "--input", str(xyz_file), "--log-level", "WARNING") == 0

        output = capsys.readouterr().out
        assert "Dimensions:" in output
        assert "Size class: medium" in output

    def test_measure_voxel(self, monkeypatch, capsys, xyz_file):
        """Test a run with a precise volume method."""
        code = self.run(monkeypatch, "--input", str(xyz_file), "--method", "voxel",
                        "--log-level", "WARNING")
        assert code == 0
        assert "voxel volume:" in capsys.readouterr().out

    def test_missing_input(self, monkeypatch, tmp_path):
        """Test the exit code for a missing input file."""
        assert self.run(monkeypatch, "--input", str(tmp_path / "none.xyz")) == 1

    def test_missing_config(self, monkeypatch, xyz_file, tmp_path):
        """Test the exit code for a missing configuration file."""
        code = self.run(monkeypatch, "--input", str(xyz_file),
                        "--config", str(tmp_path / "none.yaml"))
        assert code == 1
