"""
Blurb Board WebSocket client for manual testing
Authenticates with a token, posts lines from stdin and prints board events
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional

import websockets


def build_handshake(token: str) -> Dict[str, Any]:
    return {"t": "hi", "token": token}


def build_post(content: str, parent_id: Optional[int] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"content": content}
    if parent_id is not None:
        message["parentId"] = parent_id
    return {"t": "post", "message": message}


def parse_input(line: str) -> Optional[Dict[str, Any]]:
    """
    Turn a line typed at the prompt into a post event

    ``/reply <id> text`` answers an existing message; anything else starts a
    new thread. Returns None for blank or malformed input.
    """
    line = line.strip()
    if not line:
        return None

    if line.startswith("/reply"):
        parts = line.split(maxsplit=2)
        if len(parts) < 3 or not parts[1].isdigit():
            return None
        return build_post(parts[2], int(parts[1]))

    return build_post(line)


def format_event(data: Dict[str, Any]) -> Optional[str]:
    """Render a server event for the terminal; None for events with no output"""
    event_type = data.get("t")

    if event_type == "nm":
        message = data.get("message", {})
        reply = f" -> {message.get('parentId')}" if message.get("parentId") else ""
        return f"[{message.get('id')}{reply}] {message.get('authorName')}: {message.get('content')}"

    if event_type == "ucu":
        return f"{data.get('count')} users online"

    if event_type in ("hi", "post"):
        if data.get("success"):
            return "Authenticated" if event_type == "hi" else None
        return f"{event_type} failed: {data.get('error')}"

    if event_type == "error":
        return f"Server error: {data.get('error')}"

    return f"Unknown event: {data}"


class BoardClient:
    """Interactive Blurb Board client"""

    def __init__(self, token: str, server_url: str = "ws://localhost:8080/ws"):
        self.token = token
        self.server_url = server_url
        self.websocket = None
        self.running = False

    async def send(self, event: Dict[str, Any]):
        await self.websocket.send(json.dumps(event))

    async def listen_for_messages(self):
        """Print events until the server closes the connection"""
        try:
            async for frame in self.websocket:
                text = format_event(json.loads(frame))
                if text:
                    print(text)
        except websockets.exceptions.ConnectionClosed:
            print("Connection closed by server")
        finally:
            self.running = False

    async def run_interactive(self):
        async with websockets.connect(self.server_url) as websocket:
            self.websocket = websocket
            self.running = True
            await self.send(build_handshake(self.token))

            listen_task = asyncio.create_task(self.listen_for_messages())
            print("Type a message, '/reply <id> text' to reply, or /quit")

            try:
                while self.running:
                    line = await asyncio.to_thread(sys.stdin.readline)
                    if not line or line.strip() == "/quit":
                        break
                    event = parse_input(line)
                    if event is None:
                        print("Nothing to send")
                        continue
                    await self.send(event)
            finally:
                self.running = False
                listen_task.cancel()


async def main():
    parser = argparse.ArgumentParser(description="Blurb Board WebSocket client")
    parser.add_argument("--token", required=True, help="Credential token from the login service")
    parser.add_argument("--server", default="ws://localhost:8080/ws", help="Server URL")
    args = parser.parse_args()

    await BoardClient(args.token, args.server).run_interactive()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except OSError as e:
        print(f"Client error: {e}")
        sys.exit(1)
