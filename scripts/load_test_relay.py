#!/usr/bin/env python3
"""Async load test for the relay endpoint.

Sends signed Slack-style events and reports latency against Slack's
3-second acknowledgment budget.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import time

import aiohttp

from hookrelay.common.hmac import sign


async def _run_one(
    session: aiohttp.ClientSession,
    url: str,
    secret: bytes,
    index: int,
    sem: asyncio.Semaphore,
    latencies: list[float],
    errors: list[int],
) -> None:
    body = json.dumps(
        {"type": "event_callback", "event_id": f"Ev{index:08d}", "event": {"type": "message"}}
    ).encode("utf-8")
    timestamp = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": sign(secret, timestamp, body),
    }

    async with sem:
        start = time.perf_counter()
        try:
            async with session.post(url, data=body, headers=headers) as resp:
                await resp.read()
                if resp.status != 200:
                    errors.append(resp.status)
        except aiohttp.ClientError:
            errors.append(599)
        finally:
            latencies.append(time.perf_counter() - start)


async def run_load_test(
    url: str,
    secret: bytes,
    requests: int,
    concurrency: int,
    timeout: aiohttp.ClientTimeout,
) -> tuple[float, float, float, float, int]:
    sem = asyncio.Semaphore(concurrency)
    latencies: list[float] = []
    errors: list[int] = []

    async with aiohttp.ClientSession(timeout=timeout) as session:
        tasks = [
            _run_one(session, url, secret, i, sem, latencies, errors)
            for i in range(requests)
        ]
        start = time.perf_counter()
        await asyncio.gather(*tasks)
        total = time.perf_counter() - start

    latencies_sorted = sorted(latencies)
    p50 = latencies_sorted[max(int(0.50 * len(latencies_sorted)) - 1, 0)]
    p95 = latencies_sorted[max(int(0.95 * len(latencies_sorted)) - 1, 0)]
    rps = requests / total if total > 0 else 0.0
    return total, rps, p50, p95, len(errors)


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", default="http://localhost:8080/slack/events")
    parser.add_argument("--secret", default=os.environ.get("HOOKRELAY_SIGNING_SECRET", ""))
    parser.add_argument("--requests", type=int, default=200)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--timeout", type=float, default=10.0)
    parser.add_argument("--max-error-rate", type=float, default=0.01)
    parser.add_argument("--p95-budget", type=float, default=3.0, help="Seconds")
    args = parser.parse_args()

    if not args.secret:
        parser.error("--secret or HOOKRELAY_SIGNING_SECRET is required")

    total, rps, p50, p95, error_count = asyncio.run(
        run_load_test(
            url=args.url,
            secret=args.secret.encode("utf-8"),
            requests=args.requests,
            concurrency=args.concurrency,
            timeout=aiohttp.ClientTimeout(total=args.timeout),
        )
    )

    error_rate = error_count / args.requests if args.requests else 0.0
    summary = {
        "requests": args.requests,
        "concurrency": args.concurrency,
        "total_seconds": round(total, 3),
        "rps": round(rps, 2),
        "p50_ms": round(p50 * 1000, 2),
        "p95_ms": round(p95 * 1000, 2),
        "errors": error_count,
        "error_rate": round(error_rate, 3),
    }

    print(json.dumps(summary, indent=2))
    if error_rate > args.max_error_rate or p95 > args.p95_budget:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
