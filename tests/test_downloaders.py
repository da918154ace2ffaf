"""
Unit tests for the yt-dlp metadata lookup and stream command.
"""

import time
from unittest.mock import MagicMock, patch

import pytest
import yt_dlp

from loopclip.domain.errors import SourceUnavailable
from loopclip.infrastructure import downloaders
from loopclip.infrastructure.downloaders import (
    build_info_options,
    build_source_stream_command,
    fetch_source_metadata,
    resolve_source_metadata,
)

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def mock_youtube_dl(info=None, error=None):
    """Patch target for yt_dlp.YoutubeDL returning ``info`` or raising ``error``."""
    ydl_cls = MagicMock()
    ydl = ydl_cls.return_value.__enter__.return_value
    if error is not None:
        ydl.extract_info.side_effect = error
    else:
        ydl.extract_info.return_value = info
    return ydl_cls


class TestInfoOptions:
    """Tests for the yt-dlp options used for metadata."""

    def test_metadata_only_with_android_client(self, settings):
        opts = build_info_options(settings)
        assert opts["skip_download"] is True
        assert opts["noplaylist"] is True
        assert opts["extractor_args"] == {"youtube": {"player_client": ["android"]}}
        assert "cookiefile" not in opts

    def test_cookies_file_when_present(self, settings, tmp_path):
        cookies = tmp_path / "cookies.txt"
        cookies.write_text("# Netscape HTTP Cookie File\n")
        settings.yt_cookies_file = str(cookies)
        assert build_info_options(settings)["cookiefile"] == str(cookies)

    def test_missing_cookies_file_is_ignored(self, settings, tmp_path):
        settings.yt_cookies_file = str(tmp_path / "missing.txt")
        assert "cookiefile" not in build_info_options(settings)


class TestFetchSourceMetadata:
    """Tests for the blocking metadata lookup."""

    def test_title_and_duration(self, settings):
        ydl_cls = mock_youtube_dl({"title": "My Song", "duration": 212, "id": "dQw4w9WgXcQ"})
        with patch.object(downloaders.yt_dlp, "YoutubeDL", ydl_cls):
            metadata = fetch_source_metadata(URL, settings)

        assert metadata.title == "My Song"
        assert metadata.duration_seconds == 212.0
        ydl_cls.return_value.__enter__.return_value.extract_info.assert_called_once_with(
            URL, download=False
        )

    def test_missing_fields(self, settings):
        with patch.object(downloaders.yt_dlp, "YoutubeDL", mock_youtube_dl({"title": ""})):
            metadata = fetch_source_metadata(URL, settings)

        assert metadata.title is None
        assert metadata.display_title == "video"
        assert metadata.duration_seconds is None

    def test_download_error(self, settings):
        error = yt_dlp.utils.DownloadError("ERROR: Video unavailable")
        with patch.object(downloaders.yt_dlp, "YoutubeDL", mock_youtube_dl(error=error)):
            with pytest.raises(SourceUnavailable):
                fetch_source_metadata(URL, settings)

    def test_non_object_response(self, settings):
        with patch.object(downloaders.yt_dlp, "YoutubeDL", mock_youtube_dl(info=None)):
            with pytest.raises(SourceUnavailable):
                fetch_source_metadata(URL, settings)


class TestResolveSourceMetadata:
    """Tests for the async wrapper."""

    @pytest.mark.asyncio
    async def test_timeout(self, settings):
        settings.metadata_timeout_seconds = 0.05

        def slow_lookup(url, settings):
            time.sleep(0.5)

        with patch.object(downloaders, "fetch_source_metadata", slow_lookup):
            with pytest.raises(SourceUnavailable):
                await resolve_source_metadata(URL, settings)

    @pytest.mark.asyncio
    async def test_passes_result_through(self, settings):
        ydl_cls = mock_youtube_dl({"title": "t", "duration": 10.5})
        with patch.object(downloaders.yt_dlp, "YoutubeDL", ydl_cls):
            metadata = await resolve_source_metadata(URL, settings)
        assert metadata.duration_seconds == 10.5


class TestSourceStreamCommand:
    """Tests for the yt-dlp streaming command."""

    def test_streams_best_audio_to_stdout(self, settings):
        cmd = build_source_stream_command(URL, settings)

        assert cmd[0] == "yt-dlp"
        assert cmd[cmd.index("--format") + 1] == "bestaudio/best"
        assert cmd[cmd.index("--extractor-args") + 1] == "youtube:player_client=android"
        assert cmd[cmd.index("--output") + 1] == "-"
        assert cmd[-2:] == ["--", URL]

    def test_cookies(self, settings, tmp_path):
        cookies = tmp_path / "cookies.txt"
        cookies.write_text("")
        settings.yt_cookies_file = str(cookies)
        cmd = build_source_stream_command(URL, settings)
        assert cmd[cmd.index("--cookies") + 1] == str(cookies)
