"""lenstrace - related image sources via headless visual search

Simple CLI for one-off lookups and for serving the API.
"""

import argparse
import asyncio
import json
import sys

from lenstrace.config import settings
from lenstrace.lens_core.models.errors import LensError
from lenstrace.lens_core.models.interfaces import ExtractionRequest
from lenstrace.main import build_coordinator
from lenstrace.tools import web_utils


async def run_lookup(image_url: str, bypass_cache: bool = False) -> int:
    """Run one extraction and print the API-shaped JSON response."""
    print(f"Image URL: {image_url}", file=sys.stderr)
    print("-" * 50, file=sys.stderr)

    coordinator = build_coordinator(settings)
    await coordinator.start()
    try:
        result = await coordinator.resolve(
            ExtractionRequest(image_url=image_url, bypass_cache=bypass_cache)
        )
    except LensError as exc:
        print(f"[!] {exc.kind}: {exc}", file=sys.stderr)
        return 1
    finally:
        await coordinator.shutdown()

    print(json.dumps(result.to_dict(), indent=2))
    print(f"[*] {len(result.sources)} related sources", file=sys.stderr)
    return 0


def serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("lenstrace.main:app", host=host, port=port)


def main():
    parser = argparse.ArgumentParser(description="lenstrace related image sources")
    parser.add_argument("--image-url", "-u", help="Image URL to look up")
    parser.add_argument("--bypass-cache", action="store_true", help="Ignore cached results")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API")
    parser.add_argument("--host", default=settings.host, help="Bind address for --serve")
    parser.add_argument("--port", type=int, default=settings.port, help="Port for --serve")

    args = parser.parse_args()

    if args.serve:
        serve(args.host, args.port)
        return

    if not args.image_url:
        parser.error("--image-url is required unless --serve is given")
    if not web_utils.is_valid_url(args.image_url):
        parser.error(f"not a valid http(s) URL: {args.image_url}")

    sys.exit(asyncio.run(run_lookup(args.image_url, args.bypass_cache)))


if __name__ == "__main__":
    main()
