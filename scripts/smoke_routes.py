# scripts/smoke_routes.py
import asyncio
import json
import os
from pathlib import Path

import httpx
from dotenv import load_dotenv

# Resolve .env relative to the repo root so this script works from any cwd.
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

GATEWAY_URL = os.getenv("MODEL_ROUTER_URL", "http://127.0.0.1:3456")

REQUESTS_TO_TEST = [
    {"name": "default", "body": {}},
    {"name": "background", "body": {"metadata": {"background": True}}},
    {"name": "think", "body": {"thinking": {"type": "enabled", "budget_tokens": 1024}}},
]


async def smoke_route(client: httpx.AsyncClient, case: dict):
    """Stream one request through the running gateway and print what came back"""
    body = {
        "model": "claude-sonnet-4-20250514",
        "max_tokens": 64,
        "stream": True,
        "messages": [{"role": "user", "content": "Say 'Hello from the router!' in one sentence."}],
        **case["body"],
    }

    print(f"\n🧪 {case['name']}...")
    try:
        async with client.stream("POST", "/v1/messages", json=body) as response:
            print(
                f"   Routed to: {response.headers.get('X-Provider')} "
                f"({response.headers.get('X-Route-Category')})"
            )
            if response.status_code != 200:
                await response.aread()
                print(f"   ❌ HTTP {response.status_code}: {response.text}")
                return

            print("   Response: ", end="")
            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                event = json.loads(line[len("data: "):])
                if event["type"] == "content_block_delta" and event["delta"]["type"] == "text_delta":
                    print(event["delta"]["text"], end="", flush=True)
                elif event["type"] == "message_delta":
                    print(f"\n   Stop reason: {event['delta']['stop_reason']}")
        print(f"   ✅ {case['name']} working!")

    except httpx.HTTPError as e:
        print(f"\n   ❌ Error: {type(e).__name__}: {e}")


async def main():
    print("=" * 60)
    print(f"Model Router smoke test against {GATEWAY_URL}")
    print("=" * 60)

    async with httpx.AsyncClient(base_url=GATEWAY_URL, timeout=60.0) as client:
        for case in REQUESTS_TO_TEST:
            await smoke_route(client, case)

    print("\n" + "=" * 60)
    print("Testing complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
