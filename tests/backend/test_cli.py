"""
Tests for the runtime-manager command line.
"""
from pathlib import Path

import pytest

from runtime_manager.cli.versions import COMMANDS, build_parser, format_version, main
from runtime_manager.core.schemas import VersionInfo


class TestParser:

    @pytest.mark.unit
    def test_download_takes_version(self) -> None:
        args = build_parser().parse_args(["download", "2.1.5"])

        assert args.command == "download"
        assert args.version == "2.1.5"

    @pytest.mark.unit
    def test_set_token_clear(self) -> None:
        args = build_parser().parse_args(["set-token", "--clear"])

        assert args.clear is True
        assert args.token is None

    @pytest.mark.unit
    def test_every_command_has_a_handler(self) -> None:
        parser = build_parser()
        for command in COMMANDS:
            extra = ["x"] if command in ("download", "activate", "delete", "title") else []
            assert parser.parse_args([command, *extra]).command == command

    @pytest.mark.unit
    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestFormatVersion:

    @pytest.mark.unit
    def test_flags(self) -> None:
        info = VersionInfo(
            id="2.1.5", platform="linux-x64", is_active=True, is_downloaded=True,
            is_available=True,
        )
        assert format_version(info) == "2.1.5  (active, downloaded)"

    @pytest.mark.unit
    def test_local_only(self) -> None:
        info = VersionInfo(
            id="2.0.3", platform="linux-x64", is_bundled=True, is_downloaded=True,
            is_available=False,
        )
        assert format_version(info) == "2.0.3  (bundled, downloaded, local only)"


class TestMain:

    @pytest.mark.unit
    def test_missing_config_file(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        code = main(["--config", str(tmp_path / "absent.yaml"), "list"])

        assert code == 2
        assert "Configuration error" in capsys.readouterr().err

    @pytest.mark.unit
    def test_invalid_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "runtime.yaml"
        path.write_text("storage: [broken\n")

        assert main(["--config", str(path), "current"]) == 2
