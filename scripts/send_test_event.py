
import argparse
import asyncio
import time

import httpx

# Sends a fake Strava push event to a locally running server.
# Useful to watch the retry loop and the description update end to end.

async def main(base_url: str, activity_id: int, owner_id: int, aspect: str, object_type: str):
    event = {
        "object_type": object_type,
        "object_id": activity_id,
        "aspect_type": aspect,
        "owner_id": owner_id,
        "subscription_id": 1,
        "event_time": int(time.time()),
    }
    async with httpx.AsyncClient(timeout=15.0) as client:
        print(f"POST {base_url}/api/strava/webhook {event}")
        try:
            resp = await client.post(f"{base_url}/api/strava/webhook", json=event)
        except httpx.RequestError as e:
            print(f"Request failed: {e}")
            return
        print(f"{resp.status_code}: {resp.json()}")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a test Strava webhook event")
    parser.add_argument("activity_id", type=int)
    parser.add_argument("owner_id", type=int)
    parser.add_argument("--aspect", default="create", choices=["create", "update", "delete", "deauthorize"])
    parser.add_argument("--object-type", default="activity", choices=["activity", "athlete"])
    parser.add_argument("--base-url", default="http://localhost:8000")
    args = parser.parse_args()
    asyncio.run(main(args.base_url, args.activity_id, args.owner_id, args.aspect, args.object_type))
