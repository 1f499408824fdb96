"""Run one search through the full pipeline and print the result envelope."""

from __future__ import annotations

import asyncio
import json
import sys

from dupefinder.config import Settings, configure_logging
from dupefinder.errors import DupeFinderError
from dupefinder.services import build_services


async def main(search_text: str) -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        result = await services.orchestrator.search(search_text)
        print(json.dumps(result.envelope(), indent=2))
    except DupeFinderError as exc:
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        sys.exit(1)
    finally:
        await services.aclose()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        raise SystemExit("usage: search.py <search text>")
    asyncio.run(main(" ".join(sys.argv[1:])))
