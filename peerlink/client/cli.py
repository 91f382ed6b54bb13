import argparse
import asyncio
import logging
import sys

from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from peerlink.config import ICE_SERVERS, LOG_LEVEL, SERVER_URL
from peerlink.negotiation.errors import UnsupportedEnvironment
from peerlink.negotiation.media import open_video_file
from peerlink.negotiation.session import NegotiationState, create_session
from .signaling_client import SignalingClient

logger = logging.getLogger(__name__)

LEAVE_TIMEOUT = 1.0


async def read_chat(client: SignalingClient):
    """Send every stdin line as a chat message until EOF"""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        client.send_chat(line.rstrip("\n"))


async def run_client(server: str, room: str, username: str, share: str = None, record: str = None):
    # Fail before connecting if the shared file cannot be played
    media = open_video_file(share) if share else None

    session = create_session(ICE_SERVERS)
    client = SignalingClient(server, session)
    recorder = MediaRecorder(record) if record else MediaBlackhole()

    @session.on("track")
    def on_track(track):
        logger.info(f"Receiving remote {track.kind}")
        recorder.addTrack(track)

    @session.on("statechange")
    async def on_state(state):
        if state is NegotiationState.CONNECTED and session.remote_streams:
            await recorder.start()

    @session.on("datachannel")
    def on_datachannel(channel):
        @channel.on("message")
        def on_message(data):
            print(f"[{channel.label}] {data}")

    relay = asyncio.create_task(client.run())
    await client.connected.wait()
    client.join(room, username)
    print(f"Joined room {room} as {username}, type to chat")

    chat = asyncio.create_task(read_chat(client))
    try:
        if media is not None:
            print("Waiting for someone to join before sharing...")
            await client.peer_joined.wait()
            await client.share(media)
            print(f"Sharing {share}")
        await asyncio.wait([relay, chat], return_when=asyncio.FIRST_COMPLETED)
    finally:
        chat.cancel()
        client.leave()
        if not relay.done():
            try:
                await asyncio.wait_for(client.flush(), timeout=LEAVE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Relay did not take the leave-room message in time")
        relay.cancel()
        await recorder.stop()
        if media is not None:
            media.stop()
        await session.reset()
        for entry in client.messages:
            print(f"{entry.sender}: {entry.message}")


def main():
    parser = argparse.ArgumentParser(description="Join a peerlink room, chat and share a video")
    parser.add_argument("--server", default=SERVER_URL, help="relay websocket url")
    parser.add_argument("--room", required=True)
    parser.add_argument("--username", required=True)
    parser.add_argument("--share", help="local video file to share with the room")
    parser.add_argument("--record", help="write the received media to this file")
    args = parser.parse_args()

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    try:
        asyncio.run(run_client(args.server, args.room, args.username, args.share, args.record))
    except UnsupportedEnvironment as e:
        print(f"Cannot share video: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
