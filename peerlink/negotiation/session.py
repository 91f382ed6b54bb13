import asyncio
import logging
from collections import deque
from contextlib import contextmanager
from enum import Enum
from typing import Callable, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection
from pyee.asyncio import AsyncIOEventEmitter

from peerlink.config import ICE_SERVERS
from .errors import SequenceError
from .media import LocalMedia, RemoteStream
from .sdp import (
    candidate_from_payload,
    description_from_payload,
    description_to_payload,
    local_candidates,
    stream_id_for_mid,
)

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "peerlink"


class NegotiationState(Enum):
    IDLE = "idle"
    LOCAL_OFFER_CREATED = "local-offer-created"
    AWAITING_ANSWER = "awaiting-answer"
    REMOTE_OFFER_RECEIVED = "remote-offer-received"
    ANSWER_CREATED = "answer-created"
    CONNECTED = "connected"
    FAILED = "failed"


class Role(Enum):
    SHARER = "sharer"
    VIEWER = "viewer"


class Subscription:
    """Handle for one registered listener; close() removes it."""

    def __init__(self, emitter: AsyncIOEventEmitter, event: str, handler: Callable):
        self._emitter = emitter
        self.event = event
        self.handler = handler
        self.closed = False
        emitter.on(event, handler)

    def close(self):
        if not self.closed:
            self.closed = True
            self._emitter.remove_listener(self.event, self.handler)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def create_peer_connection(ice_servers: Optional[List[str]] = None) -> RTCPeerConnection:
    urls = ICE_SERVERS if ice_servers is None else ice_servers
    config = RTCConfiguration([RTCIceServer(urls=url) for url in urls])
    logger.info(f"Creating RTCPeerConnection with ICE servers: {urls}")
    return RTCPeerConnection(config)


class NegotiationSession(AsyncIOEventEmitter):
    """One client's side of a peer connection negotiation.

    Events:

    - ``localcandidate``: a candidate payload to forward to the remote peer,
      then ``None`` once gathering is complete.
    - ``track``: every inbound track as it arrives.
    - ``stream``: a :class:`RemoteStream`, once per distinct remote stream.
    - ``datachannel``: a data channel opened by the remote side.
    - ``statechange``: the new :class:`NegotiationState`.

    The four contract operations are serialised by one lock, so they may be
    called straight from concurrent message handlers.
    """

    def __init__(self, peer_factory: Optional[Callable[[], RTCPeerConnection]] = None):
        super().__init__()
        self._peer_factory = peer_factory or create_peer_connection
        self._pc: Optional[RTCPeerConnection] = None
        self._operation_lock = asyncio.Lock()
        self._pending_candidates = deque()
        self._local_candidates: List[Optional[dict]] = []
        self._remote_streams = {}
        self._remote_description = None
        self.state = NegotiationState.IDLE
        self.role: Optional[Role] = None
        self.data_channel = None

    @property
    def peer(self) -> RTCPeerConnection:
        """The session's single peer connection, created on first use"""
        if self._pc is None:
            self._pc = self._peer_factory()
            self._pc.on("track", self._on_track)
            self._pc.on("datachannel", self._on_datachannel)
            self._pc.on("connectionstatechange", self._on_connection_state_change)
        return self._pc

    @property
    def pending_candidates(self) -> int:
        return len(self._pending_candidates)

    @property
    def remote_streams(self) -> List[RemoteStream]:
        return list(self._remote_streams.values())

    async def create_offer(self) -> dict:
        async with self._operation_lock:
            self._expect("create an offer", NegotiationState.IDLE)
            pc = self.peer
            self.role = Role.SHARER
            with self._failing():
                if self.data_channel is None:
                    self.data_channel = pc.createDataChannel(DATA_CHANNEL_LABEL)
                offer = await pc.createOffer()
                self._set_state(NegotiationState.LOCAL_OFFER_CREATED)
                await pc.setLocalDescription(offer)
            self._set_state(NegotiationState.AWAITING_ANSWER)
            self._publish_local_candidates()
            return description_to_payload(pc.localDescription)

    async def create_answer(self, offer: dict) -> dict:
        async with self._operation_lock:
            self._expect("create an answer", NegotiationState.IDLE)
            description = description_from_payload(offer, "offer")
            pc = self.peer
            self.role = Role.VIEWER
            with self._failing():
                # aiortc fires "track" before it stores the remote description
                self._remote_description = description
                await pc.setRemoteDescription(description)
                self._set_state(NegotiationState.REMOTE_OFFER_RECEIVED)
                await self._flush_pending_candidates()
                answer = await pc.createAnswer()
                self._set_state(NegotiationState.ANSWER_CREATED)
                await pc.setLocalDescription(answer)
            self._set_state(NegotiationState.CONNECTED)
            self._publish_local_candidates()
            return description_to_payload(pc.localDescription)

    async def accept_answer(self, answer: dict):
        async with self._operation_lock:
            self._expect("accept an answer", NegotiationState.AWAITING_ANSWER)
            description = description_from_payload(answer, "answer")
            with self._failing():
                self._remote_description = description
                await self.peer.setRemoteDescription(description)
                await self._flush_pending_candidates()
            self._set_state(NegotiationState.CONNECTED)

    async def add_remote_candidate(self, payload: dict):
        async with self._operation_lock:
            self._reject_if_failed("add a remote candidate")
            candidate = candidate_from_payload(payload)
            if candidate is None:
                logger.debug("Remote peer finished gathering candidates")
                return
            if self._remote_description is None:
                self._pending_candidates.append(candidate)
                logger.debug(f"Buffered remote candidate ({len(self._pending_candidates)} pending)")
                return
            with self._failing():
                await self.peer.addIceCandidate(candidate)

    async def attach_local_media(self, media: LocalMedia):
        """Add every track of a local stream. Must precede offer/answer."""
        async with self._operation_lock:
            self._expect("attach local media", NegotiationState.IDLE)
            pc = self.peer
            for track in media.tracks:
                sender = pc.addTrack(track)
                # announced as the a=msid stream id of the track's m-line
                sender._stream_id = media.stream_id
            logger.info(f"Attached {len(media.tracks)} local tracks from stream {media.stream_id}")

    async def reset(self):
        """Release the peer connection and return to IDLE"""
        async with self._operation_lock:
            pc, self._pc = self._pc, None
            if pc is not None:
                await pc.close()
            self._pending_candidates.clear()
            self._local_candidates.clear()
            self._remote_streams.clear()
            self._remote_description = None
            self.data_channel = None
            self.role = None
            self._set_state(NegotiationState.IDLE)

    def subscribe(self, event: str, handler: Callable) -> Subscription:
        return Subscription(self, event, handler)

    def on_local_candidate(self, handler: Callable[[Optional[dict]], None]) -> Subscription:
        """Subscribe to local candidates, replaying those already produced"""
        for candidate in self._local_candidates:
            handler(candidate)
        return self.subscribe("localcandidate", handler)

    def on_remote_stream(self, handler: Callable[[RemoteStream], None]) -> Subscription:
        return self.subscribe("stream", handler)

    def on_data_channel(self, handler: Callable) -> Subscription:
        return self.subscribe("datachannel", handler)

    def _expect(self, operation: str, *states: NegotiationState):
        if self.state not in states:
            raise SequenceError(operation, self.state)

    def _reject_if_failed(self, operation: str):
        if self.state is NegotiationState.FAILED:
            raise SequenceError(operation, self.state)

    @contextmanager
    def _failing(self):
        try:
            yield
        except Exception as e:
            logger.error(f"Negotiation failed in state {self.state.value}: {e}")
            self._set_state(NegotiationState.FAILED)
            raise

    def _set_state(self, state: NegotiationState):
        if state is not self.state:
            logger.info(f"Negotiation state {self.state.value} -> {state.value}")
            self.state = state
            self.emit("statechange", state)

    async def _flush_pending_candidates(self):
        while self._pending_candidates:
            await self.peer.addIceCandidate(self._pending_candidates.popleft())

    def _publish_local_candidates(self):
        produced = list(local_candidates(self.peer.localDescription))
        logger.info(f"Gathered {len(produced)} local candidates")
        for candidate in produced + [None]:
            self._local_candidates.append(candidate)
            self.emit("localcandidate", candidate)

    def _on_track(self, track):
        stream_id = self._stream_id_for(track)
        stream = self._remote_streams.get(stream_id)
        if stream is not None and track in stream.tracks:
            return
        logger.info(f"Received {track.kind} track {track.id} for stream {stream_id}")
        self.emit("track", track)
        if stream is None:
            stream = self._remote_streams[stream_id] = RemoteStream(stream_id, [track])
            self.emit("stream", stream)
        else:
            stream.tracks.append(track)

    def _stream_id_for(self, track) -> str:
        for transceiver in self.peer.getTransceivers():
            if transceiver.receiver.track is track:
                stream_id = stream_id_for_mid(self._remote_description, transceiver.mid)
                if stream_id:
                    return stream_id
        return track.id

    def _on_datachannel(self, channel):
        logger.info(f"Remote data channel opened: {channel.label}")
        self.emit("datachannel", channel)

    def _on_connection_state_change(self):
        logger.info(f"Connection state changed: {self._pc.connectionState if self._pc else 'closed'}")


def create_session(ice_servers: Optional[List[str]] = None) -> NegotiationSession:
    """Build an independent session whose peer connection uses ``ice_servers``"""
    return NegotiationSession(lambda: create_peer_connection(ice_servers))
