import asyncio
import json

import websockets


async def main():
    # Start the server first: uvicorn roomchat.main:app --app-dir backend --port 3000
    async with websockets.connect("ws://localhost:3000/ws/chat") as ws:
        connected = json.loads(await ws.recv())
        print(f"Connected: {connected}")

        await ws.send(json.dumps({"type": "registerUser", "displayName": "smoke-test"}))
        await ws.send(json.dumps({"type": "joinRoom", "room": "sports"}))

        # Join notice, then the occupant list
        print(f"Received: {await ws.recv()}")
        print(f"Received: {await ws.recv()}")

        await ws.send(json.dumps({"type": "groupMessage", "message": "Hello from Python!"}))
        print(f"Received: {await ws.recv()}")

asyncio.run(main())
