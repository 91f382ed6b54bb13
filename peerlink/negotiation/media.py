import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from aiortc.contrib.media import MediaPlayer, MediaStreamTrack
from av.error import FFmpegError

from .errors import UnsupportedEnvironment

logger = logging.getLogger(__name__)


@dataclass
class LocalMedia:
    """Tracks captured from one local source, attached together to a session"""
    tracks: List[MediaStreamTrack]
    stream_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    player: Optional[MediaPlayer] = None

    def stop(self):
        for track in self.tracks:
            track.stop()


@dataclass
class RemoteStream:
    """Inbound media grouped by the stream id the remote side announced"""
    stream_id: str
    tracks: List[MediaStreamTrack] = field(default_factory=list)


def open_video_file(path, loop: bool = False) -> LocalMedia:
    """Open a local video file for sharing.

    Raises UnsupportedEnvironment when the file cannot be decoded or carries
    neither audio nor video.
    """
    source = Path(path)
    if not source.is_file():
        raise UnsupportedEnvironment(f"No such media file: {source}")

    try:
        player = MediaPlayer(str(source), loop=loop)
    except (FFmpegError, OSError) as e:
        raise UnsupportedEnvironment(f"Cannot decode {source}: {e}") from e

    tracks = [track for track in (player.video, player.audio) if track is not None]
    if not tracks:
        raise UnsupportedEnvironment(f"{source} has no audio or video stream")

    logger.info(f"Opened {source} with tracks: {[t.kind for t in tracks]}")
    return LocalMedia(tracks=tracks, player=player)
