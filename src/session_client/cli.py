"""Command-line call client for exercising a coordinator end to end.

Joins a consultation room with local capture devices, prints state changes
and chat, and reads commands or chat text from stdin.
"""

import argparse
import asyncio
import logging
import signal
import sys

from aiortc.contrib.media import MediaBlackhole

from src.session_client.chat import ChatEntry
from src.session_client.config import ClientConfig
from src.session_client.errors import ScreenShareError, SignalingConnectionError
from src.session_client.rtc import AiortcMediaDevices, aiortc_peer_factory
from src.session_client.session import CallSession
from src.session_client.state import FINISHED_STATES, CallState

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /mute, /unmute       - Toggle outgoing audio
  /video-off, /video-on - Toggle outgoing video
  /share, /unshare     - Start/stop screen sharing
  /status              - Show call summary
  /quit                - End the call and exit
  /help                - Show this help
Any other text is sent as a chat message.
"""


class CallClient:
    """Interactive wrapper around one ``CallSession``."""

    def __init__(self, session: CallSession, display_name: str) -> None:
        self.session = session
        self.display_name = display_name
        self.running = True
        self._remote_sink: MediaBlackhole | None = None
        self._sink_task: asyncio.Task[None] | None = None

        session.add_state_listener(self._on_state_change)
        session.add_chat_listener(self._on_chat)

    def _on_state_change(self, old: CallState, new: CallState) -> None:
        print(f"[call] {old.value} -> {new.value}")
        if new == CallState.ERROR:
            print(f"[call] error: {self.session.error_message}")
        if new == CallState.CONNECTED and self.session.remote_stream is not None:
            # Remote media has to be consumed for the receivers to keep running
            self._remote_sink = MediaBlackhole()
            for track in self.session.remote_stream.get_tracks():
                self._remote_sink.addTrack(track.source)
            self._sink_task = asyncio.create_task(self._remote_sink.start())
        if new in FINISHED_STATES:
            self.running = False

    def _on_chat(self, entry: ChatEntry) -> None:
        if not entry.is_self:
            print(f"[{entry.timestamp}] {entry.sender}: {entry.text}")

    async def handle_command(self, command: str) -> None:
        if command == "quit":
            self.running = False
        elif command == "help":
            print(HELP_TEXT)
        elif command in ("mute", "unmute"):
            self.session.toggle_audio(command == "unmute")
        elif command in ("video-off", "video-on"):
            self.session.toggle_video(command == "video-on")
        elif command == "share":
            try:
                await self.session.start_screen_share()
            except ScreenShareError as e:
                print(f"Screen share failed: {e}")
        elif command == "unshare":
            try:
                await self.session.stop_screen_share()
            except ScreenShareError as e:
                print(f"Could not return to camera: {e}")
        elif command == "status":
            for key, value in self.session.get_summary().items():
                print(f"  {key}: {value}")
        else:
            print(f"Unknown command: {command}")
            print("Type /help for available commands")

    async def input_loop(self) -> None:
        print(HELP_TEXT)
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "")
            except EOFError:
                self.running = False
                break

            text = text.strip()
            if not text:
                continue

            if text.startswith("/"):
                await self.handle_command(text[1:].lower())
                continue

            try:
                await self.session.send_chat_message(text, self.display_name)
            except SignalingConnectionError as e:
                print(f"Chat unavailable: {e}")
            except ValueError as e:
                print(f"Message not sent: {e}")

    async def run(self) -> None:
        loop = asyncio.get_running_loop()

        def stop() -> None:
            self.running = False

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop)

        try:
            await self.session.start()
            input_task = asyncio.create_task(self.input_loop())
            while self.running:
                await asyncio.sleep(0.2)
            input_task.cancel()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.session.end_call()
            if self._sink_task is not None:
                await self._sink_task
            if self._remote_sink is not None:
                await self._remote_sink.stop()


async def run_call(
    room_id: str, display_name: str, config: ClientConfig, devices: AiortcMediaDevices
) -> None:
    session = CallSession(
        room_id,
        media_devices=devices,
        peer_factory=aiortc_peer_factory(config.ice_servers),
        config=config,
    )
    await CallClient(session, display_name).run()


def main() -> None:
    """Main entry point for the call client."""
    parser = argparse.ArgumentParser(description="Join a video consultation room")
    parser.add_argument("room_id", help="Consultation room (appointment) identifier")
    parser.add_argument("--name", default="Participant", help="Display name for chat")
    parser.add_argument(
        "--url",
        default=None,
        help="Signaling URL (default: SIGNALING_URL or ws://localhost:8080)",
    )
    parser.add_argument("--camera", default="/dev/video0", help="Camera device")
    parser.add_argument("--microphone", default="default", help="Microphone device")
    parser.add_argument("--display", default=":0.0", help="X11 display for screen sharing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = ClientConfig.from_env()
    if args.url:
        config = ClientConfig.model_validate({**config.model_dump(), "signaling_url": args.url})

    devices = AiortcMediaDevices(
        camera=args.camera,
        microphone=args.microphone,
        display=args.display,
        video_width=config.video_width,
        video_height=config.video_height,
    )

    try:
        asyncio.run(run_call(args.room_id, args.name, config, devices))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
