from __future__ import annotations

import argparse
import asyncio
import json


async def run(url: str, cmd: str, args: argparse.Namespace):
    import websockets  # type: ignore

    async with websockets.connect(url) as ws:
        # hello + initial state
        hello = json.loads(await ws.recv())
        await ws.recv()
        if cmd == "manifest":
            print(json.dumps(hello.get("payload", {}).get("manifest", []), indent=2))
            return
        if cmd == "load":
            await ws.send(json.dumps({"type": "loadMapping", "payload": {"filename": args.filename}}))
        elif cmd == "playing":
            await ws.send(json.dumps({"type": "setPlaying", "payload": {"deck": args.deck, "playing": args.state == "on"}}))
        elif cmd == "state":
            await ws.send(json.dumps({"type": "getState"}))
        # watch: just stream frames
        count = 0
        while args.frames <= 0 or count < args.frames:
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=args.timeout)
            except asyncio.TimeoutError:
                break
            print(msg)
            count += 1


def main():
    ap = argparse.ArgumentParser(description="Simple WS client for the deckmap listener")
    ap.add_argument("--url", default="ws://127.0.0.1:8766")
    ap.add_argument("--frames", type=int, default=3, help="Frames to print after the command (0 = until idle)")
    ap.add_argument("--timeout", type=float, default=2.0)
    sub = ap.add_subparsers(dest="cmd", required=True)
    sub.add_parser("manifest")
    sub.add_parser("state")
    sub.add_parser("watch")
    p_load = sub.add_parser("load"); p_load.add_argument("filename")
    p_play = sub.add_parser("playing"); p_play.add_argument("deck", choices=["A", "B"]); p_play.add_argument("state", choices=["on", "off"])
    args = ap.parse_args()
    asyncio.run(run(args.url, args.cmd, args))


if __name__ == "__main__":
    main()
