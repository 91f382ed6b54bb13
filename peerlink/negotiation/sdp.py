"""
Conversions between relay payloads and aiortc objects.

Descriptions travel as ``{"type": ..., "sdp": ...}`` and candidates as
``{"candidate": "candidate:...", "sdpMid": ..., "sdpMLineIndex": ...}``, the
same shapes a browser produces with ``toJSON()``.
"""
from typing import Iterator, Optional

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import SessionDescription, candidate_from_sdp, candidate_to_sdp

from .errors import PayloadError

CANDIDATE_PREFIX = "candidate:"


def description_from_payload(payload, expected_type: str) -> RTCSessionDescription:
    if not isinstance(payload, dict):
        raise PayloadError(f"{expected_type} must be an object, got {type(payload).__name__}")
    sdp = payload.get("sdp")
    sdp_type = payload.get("type")
    if sdp_type != expected_type:
        raise PayloadError(f"Expected {expected_type} description, got {sdp_type!r}")
    if not isinstance(sdp, str) or not sdp.strip():
        raise PayloadError(f"{expected_type} has no sdp")
    return RTCSessionDescription(sdp=sdp, type=sdp_type)


def description_to_payload(description: RTCSessionDescription) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def candidate_from_payload(payload) -> Optional[RTCIceCandidate]:
    """Parse a remote candidate. Returns None for the end-of-candidates marker."""
    if not isinstance(payload, dict):
        raise PayloadError(f"candidate must be an object, got {type(payload).__name__}")

    line = payload.get("candidate")
    if line is None or line == "":
        return None
    if not isinstance(line, str):
        raise PayloadError("candidate line must be a string")

    sdp_mid = payload.get("sdpMid")
    sdp_mline_index = payload.get("sdpMLineIndex")
    if sdp_mid is None and sdp_mline_index is None:
        raise PayloadError("candidate needs sdpMid or sdpMLineIndex")

    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    # foundation component protocol priority ip port typ type
    if len(line.split()) < 8:
        raise PayloadError(f"Invalid ICE candidate format: {line}")
    try:
        candidate = candidate_from_sdp(line)
    except (AssertionError, ValueError) as e:
        raise PayloadError(f"Invalid ICE candidate {line!r}: {e}") from e

    candidate.sdpMid = sdp_mid
    candidate.sdpMLineIndex = sdp_mline_index
    return candidate


def candidate_to_payload(candidate: RTCIceCandidate, sdp_mid: Optional[str], sdp_mline_index: int) -> dict:
    return {
        "candidate": CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        "sdpMid": sdp_mid,
        "sdpMLineIndex": sdp_mline_index,
    }


def local_candidates(description: RTCSessionDescription) -> Iterator[dict]:
    """Yield the candidates gathered into a committed local description"""
    parsed = SessionDescription.parse(description.sdp)
    for index, media in enumerate(parsed.media):
        for candidate in media.ice_candidates:
            yield candidate_to_payload(candidate, media.rtp.muxId, index)


def stream_id_for_mid(description: Optional[RTCSessionDescription], mid: Optional[str]) -> Optional[str]:
    """Look up the stream id announced (a=msid) for a media section"""
    if description is None or mid is None:
        return None
    parsed = SessionDescription.parse(description.sdp)
    for media in parsed.media:
        if media.rtp.muxId == mid and media.msid:
            return media.msid.split()[0]
    return None
