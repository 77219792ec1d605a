#!/usr/bin/env python3
"""WebSocket client example for statebridge.

This script demonstrates how to connect to a running bridge, read the
initial snapshot and follow live state changes.

Usage:
    1. Start the bridge: python -m statebridge.cli.main run examples/bridge.yaml
    2. Run this client: python examples/websocket_client.py

The client will:
    1. Connect and receive hello and the snapshot
    2. Read two states on demand
    3. Toggle a light (allow_write is enabled in the example config)
    4. Print state changes as they arrive
"""

from __future__ import annotations

import asyncio
import json
import sys


async def main(host: str = "127.0.0.1", port: int = 9400, token: str = "secret") -> int:
    """Connect to the bridge and print what it sends."""
    import websockets

    uri = f"ws://{host}:{port}/?token={token}"
    print(f"Connecting to {uri}...")

    try:
        async with websockets.connect(uri) as ws:
            # 1. Receive hello and snapshot on connect
            hello = json.loads(await asyncio.wait_for(ws.recv(), timeout=5.0))
            print(f"Connected to {hello['adapter']} at {hello['time']}")

            snapshot = json.loads(await asyncio.wait_for(ws.recv(), timeout=5.0))
            print("\n=== Snapshot ===")
            for item in snapshot.get("items", []):
                print(f"  {item['id']:<28} = {item['val']!r} (ack={item['ack']})")

            # 2. Read states on demand
            await ws.send(json.dumps({"type": "get", "ids": ["sensor.living.temp", "nope"]}))
            result = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
            print("\n=== get ===")
            for item in result.get("items", []):
                print(f"  {item['id']:<28} = {item['val']!r}")

            # 3. Write a state
            print("\n=== setState light.kitchen = true ===")
            await ws.send(json.dumps({"type": "setState", "id": "light.kitchen", "value": True}))

            # 4. Follow live updates
            print("\n=== Receiving updates (Ctrl+C to stop) ===")
            while True:
                try:
                    msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=5.0))
                except TimeoutError:
                    print("(waiting for updates...)")
                    continue

                if msg["type"] == "state":
                    print(f"[state] {msg['id']} = {msg['val']!r} (ack={msg['ack']})")
                else:
                    print(f"[{msg['type']}] {msg}")

    except ConnectionRefusedError:
        print(f"Error: Could not connect to {uri}")
        print("Make sure the bridge is running with: statebridge run examples/bridge.yaml")
        return 1
    except KeyboardInterrupt:
        print("\n\nClient stopped.")
        return 0
    except websockets.exceptions.ConnectionClosed as e:
        reason = e.rcvd.reason if e.rcvd is not None else ""
        print(f"\n\nServer closed the connection: {reason or 'no reason'}")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
