"""
Unit tests for the `pod` command line tool.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from social.graze.pod.app.cli import build_parser, run_command
from social.graze.pod.errors import BadStatusCodeError
from social.graze.pod.resources import DownloadResult, LookupResult


def parse(*argv):
    return vars(build_parser().parse_args(list(argv)))


def create_operations():
    operations = Mock()
    operations.lookup_directory = AsyncMock(return_value=LookupResult.found())
    operations.lookup_file = AsyncMock(return_value=LookupResult.not_found())
    operations.upload_file = AsyncMock(return_value=None)
    operations.download_file = AsyncMock(return_value=DownloadResult.success(b"hello"))
    operations.delete_resource = AsyncMock(return_value=BadStatusCodeError(409))
    return operations


class TestParser:
    """Test argument parsing."""

    def test_lookup_dir_defaults_to_storage_root(self):
        args = parse("lookup-dir")
        assert args["command"] == "lookup-dir"
        assert args["name"] is None

    def test_upload(self):
        args = parse("--credentials-file", "c.json", "upload", "a.txt", "local.txt", "--directory", "docs")
        assert args["credentials_file"] == "c.json"
        assert args["file"] == "local.txt"
        assert args["directory"] == "docs"
        assert args["mime_type"] is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse()


class TestRunCommand:
    """Test dispatching commands to resource operations."""

    @pytest.mark.asyncio
    async def test_lookup_dir(self, capsys):
        operations = create_operations()

        code = await run_command(parse("lookup-dir", "docs"), operations, Mock())

        assert code == 0
        operations.lookup_directory.assert_awaited_once_with("docs")
        assert capsys.readouterr().out.strip() == "found"

    @pytest.mark.asyncio
    async def test_lookup_file_not_found(self):
        code = await run_command(parse("lookup-file", "a.txt"), create_operations(), Mock())
        assert code == 1

    @pytest.mark.asyncio
    async def test_upload_guesses_mime_type(self, tmp_path):
        local_file = tmp_path / "notes.txt"
        local_file.write_bytes(b"hello")
        operations = create_operations()

        code = await run_command(
            parse("upload", "notes.txt", str(local_file)), operations, Mock()
        )

        assert code == 0
        operations.upload_file.assert_awaited_once_with("notes.txt", None, b"hello", "text/plain")

    @pytest.mark.asyncio
    async def test_download_to_file(self, tmp_path):
        output = tmp_path / "out.bin"

        code = await run_command(
            parse("download", "a.txt", "--output", str(output)), create_operations(), Mock()
        )

        assert code == 0
        assert output.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_delete_failure(self):
        code = await run_command(parse("delete", "docs"), create_operations(), Mock())
        assert code == 1

    @pytest.mark.asyncio
    async def test_refresh(self):
        request_client = Mock()
        request_client.refresh_service.refresh = AsyncMock(return_value=None)

        code = await run_command(parse("refresh"), create_operations(), request_client)

        assert code == 0
        request_client.refresh_service.refresh.assert_awaited_once_with()
