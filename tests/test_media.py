import pytest

from fakes import FakeTrack
from peerlink.negotiation.errors import UnsupportedEnvironment
from peerlink.negotiation.media import LocalMedia, open_video_file


def test_missing_file_is_unsupported(tmp_path):
    with pytest.raises(UnsupportedEnvironment):
        open_video_file(tmp_path / "missing.mp4")


def test_undecodable_file_is_unsupported(tmp_path):
    bogus = tmp_path / "movie.mp4"
    bogus.write_bytes(b"definitely not a video container")

    with pytest.raises(UnsupportedEnvironment):
        open_video_file(bogus)


def test_stop_stops_every_track():
    tracks = [FakeTrack("v"), FakeTrack("a", "audio")]
    media = LocalMedia(tracks)

    media.stop()

    assert all(track.stopped for track in tracks)
    assert media.stream_id
