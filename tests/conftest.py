import pytest

from fakes import FakePeerConnection
from peerlink.negotiation.session import NegotiationSession
from peerlink.routes.signaling.relay import Relay


@pytest.fixture
def relay():
    return Relay()


@pytest.fixture
def peers():
    """Every fake peer connection handed out by the session factory"""
    return []


@pytest.fixture
def session_factory(peers):
    def make(**kwargs):
        def peer_factory():
            pc = FakePeerConnection(**kwargs)
            peers.append(pc)
            return pc
        return NegotiationSession(peer_factory)
    return make


@pytest.fixture
def session(session_factory):
    return session_factory()
