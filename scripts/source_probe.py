#!/usr/bin/env python3
"""Probe every configured catalog provider and link resolver once."""
import argparse
import asyncio
import json
import os
import sys
import time
from typing import Any, Dict, List

from dotenv import load_dotenv


def _duration_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


async def probe_provider(provider, query: str, deep: bool) -> Dict[str, Any]:
    from animenegus_app.metadata.models import SearchFilters  # pylint: disable=import-outside-toplevel

    result: Dict[str, Any] = {
        "kind": "provider",
        "id": provider.id,
        "name": provider.name,
        "search_ok": False,
        "search_count": 0,
        "search_ms": None,
        "detail_ok": False,
        "detail_ms": None,
        "errors": []
    }

    # The private hooks raise instead of degrading, which is what a probe wants
    start = time.time()
    try:
        page = await provider._fetch_search(query, 1, 5, SearchFilters())
        result["search_ok"] = True
        result["search_count"] = len(page.items)
    except Exception as exc:
        result["errors"].append(f"search: {exc}")
        page = None
    result["search_ms"] = _duration_ms(start)

    if not deep or not page or not page.items:
        return result

    start = time.time()
    try:
        item = await provider._fetch_by_id(page.items[0].external_id)
        result["detail_ok"] = item is not None
    except Exception as exc:
        result["errors"].append(f"detail: {exc}")
    result["detail_ms"] = _duration_ms(start)
    return result


async def probe_resolver(resolver, title: str, episode: int) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "kind": "resolver",
        "id": resolver.id,
        "name": resolver.name,
        "resolve_ok": False,
        "candidate": None,
        "resolve_ms": None,
        "errors": []
    }
    start = time.time()
    try:
        candidate = await resolver._find(title, episode)
        result["resolve_ok"] = candidate is not None
        result["candidate"] = candidate.to_dict() if candidate else None
    except Exception as exc:
        result["errors"].append(f"resolve: {exc}")
    result["resolve_ms"] = _duration_ms(start)
    return result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe catalog providers and link resolvers.")
    parser.add_argument("--query", default="naruto", help="Search query / title to test.")
    parser.add_argument("--episode", type=int, default=1, help="Episode number for resolvers.")
    parser.add_argument("--deep", action="store_true", help="Also fetch details for first result.")
    parser.add_argument("--skip-resolvers", action="store_true", help="Only probe providers.")
    parser.add_argument("--sleep", type=float, default=0.2, help="Sleep seconds between probes.")
    parser.add_argument(
        "--output",
        default="instance/source_probe.json",
        help="Output JSON report path."
    )
    parser.add_argument("--env", default=".env", help="Path to .env file.")
    return parser.parse_args()


async def run_probes(args: argparse.Namespace) -> List[Dict[str, Any]]:
    # pylint: disable=import-outside-toplevel
    from animenegus_app.config import Settings
    from animenegus_app.metadata.providers import build_providers
    from sources import build_link_resolvers

    settings = Settings.from_env()
    results = []

    for provider in build_providers(settings):
        results.append(await probe_provider(provider, args.query, args.deep))
        await provider.close()
        if args.sleep:
            await asyncio.sleep(args.sleep)

    if not args.skip_resolvers:
        for resolver in build_link_resolvers(settings.resolvers, settings.kodik_api_key):
            results.append(await probe_resolver(resolver, args.query, args.episode))
            await resolver.close()
            if args.sleep:
                await asyncio.sleep(args.sleep)

    return results


def main() -> int:
    args = parse_args()
    load_dotenv(args.env)

    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

    results = asyncio.run(run_probes(args))

    provider_failures = sum(1 for r in results if r["kind"] == "provider" and not r["search_ok"])
    resolver_failures = sum(1 for r in results if r["kind"] == "resolver" and r["errors"])

    report = {
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "query": args.query,
        "episode": args.episode,
        "deep": bool(args.deep),
        "total_probes": len(results),
        "provider_failures": provider_failures,
        "resolver_failures": resolver_failures,
        "results": results
    }

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as handle:
        json.dump(report, handle, indent=2, sort_keys=True)

    print(f"Wrote report to {args.output}")
    return 1 if provider_failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
