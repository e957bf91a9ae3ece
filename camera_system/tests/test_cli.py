"""
Tests for the calibration-convert command-line tool.
"""

import pytest
import tempfile
from pathlib import Path

from camera_system.calibration_parser import SystemType, read_calibration_file
from camera_system.cli import main


TEXT_CALIBRATION = "\n".join([
    "# camera 0", "512.0", "384.0", "3000.0", "3000.0", "0.0", "-0.05", "0.0", "0.0",
    "# camera 1", "520.0", "380.0", "3010.0", "3011.0", "0.0", "-0.04", "0.01", "0.0",
    "# extrinsics", "1.0", "25.0", "0.5", "-150.0", "2.0", "30.0",
    "# image size", "1024", "1280",
]) + "\n"


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestMain:
    """Tests for the CLI entry point."""

    def test_print_summary(self, workdir, capsys):
        source = workdir / 'cal.txt'
        source.write_text(TEXT_CALIBRATION)

        assert main([str(source)]) == 0

        out = capsys.readouterr().out
        assert "CAMERA SYSTEM" in out
        assert "System type: GENERIC_SYSTEM" in out
        assert "Number of cameras: 2" in out

    def test_convert(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text(TEXT_CALIBRATION)
        target = workdir / 'cal_native.xml'

        assert main([str(source), str(target), '-v']) == 0

        data = read_calibration_file(target)
        assert data.system_type is SystemType.GENERIC_SYSTEM
        assert len(data.cameras) == 2

    def test_with_config(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text(TEXT_CALIBRATION)
        config = workdir / 'config.yaml'
        config.write_text("max_num_cameras: 3\nlog_level: WARNING\n")

        assert main([str(source), '--config', str(config)]) == 0

    def test_missing_input(self, workdir):
        assert main([str(workdir / 'missing.xml')]) == 1

    def test_malformed_input(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text("512.0\n384.0\n")

        assert main([str(source)]) == 1

    def test_unsupported_input(self, workdir):
        source = workdir / 'cal.dat'
        source.write_text("512.0\n")

        assert main([str(source)]) == 1

    def test_missing_config(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text(TEXT_CALIBRATION)

        assert main([str(source), '-c', str(workdir / 'missing.yaml')]) == 1

    def test_invalid_config(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text(TEXT_CALIBRATION)
        config = workdir / 'config.yaml'
        config.write_text("max_num_cameras: 1\n")

        assert main([str(source), '-c', str(config)]) == 1

    def test_no_output_written_on_error(self, workdir):
        source = workdir / 'cal.txt'
        source.write_text("512.0\n")
        target = workdir / 'out.xml'

        assert main([str(source), str(target)]) == 1
        assert not target.exists()
