from __future__ import annotations

import argparse
import csv
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence

import httpx

MODES = ("driving", "taxi", "transit", "walking", "bicycling", "ebike")


def _utc_now_compact() -> str:
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query a running route cost proxy for every OD pair in a CSV and save a summary."
    )
    parser.add_argument("--input-csv", required=True)
    parser.add_argument("--backend-url", default="http://localhost:3000")
    parser.add_argument("--modes", default="driving,transit,walking")
    parser.add_argument("--power-type", default=None)
    parser.add_argument("--congestion-range", default=None)
    parser.add_argument("--has-congestion-quota", action="store_true")
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--summary-path", default=None)
    parser.add_argument("--save-dir", default="out/route_batch")
    return parser


def parse_modes(raw: str) -> list[str]:
    modes = [m.strip().lower() for m in raw.split(",") if m.strip()]
    unknown = [m for m in modes if m not in MODES]
    if unknown:
        raise ValueError(f"Unknown modes: {', '.join(unknown)}")
    if not modes:
        raise ValueError("At least one mode is required")
    return modes


def load_pairs_from_csv(path: str) -> list[dict[str, str]]:
    pairs: list[dict[str, str]] = []
    with Path(path).open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        required = {"origin_lng", "origin_lat", "destination_lng", "destination_lat"}
        if not required.issubset(set(reader.fieldnames or [])):
            raise ValueError(
                "CSV must include columns: origin_lng, origin_lat, destination_lng, destination_lat"
            )

        for row in reader:
            pairs.append(
                {
                    "origin": f"{float(row['origin_lng'])},{float(row['origin_lat'])}",
                    "destination": f"{float(row['destination_lng'])},{float(row['destination_lat'])}",
                }
            )

    if not pairs:
        raise ValueError("CSV input produced zero OD pairs")
    return pairs


def execute_route_batch(
    pairs: list[dict[str, str]],
    *,
    modes: list[str],
    backend_url: str,
    extra_params: dict[str, str] | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    base = backend_url.rstrip("/")
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=60.0)

    rows: list[dict[str, Any]] = []
    try:
        for pair_idx, pair in enumerate(pairs):
            for mode in modes:
                params = {**pair, "mode": mode, **(extra_params or {})}
                resp = client.get(f"{base}/api/route", params=params)
                body = resp.json()
                rows.append(
                    {
                        "pair_index": pair_idx,
                        "mode": mode,
                        "http_status": resp.status_code,
                        "status": body.get("status"),
                        "info": body.get("info"),
                        "route_info": body.get("route_info"),
                    }
                )
    finally:
        if own_client and client is not None:
            client.close()

    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "pair_count": len(pairs),
        "modes": modes,
        "request_count": len(rows),
        "error_count": sum(1 for r in rows if r["status"] != "1"),
        "unavailable_count": sum(
            1 for r in rows if r["status"] == "1" and not (r["route_info"] or {}).get("available")
        ),
        "results": rows,
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    extra: dict[str, str] = {}
    if args.power_type:
        extra["powerType"] = args.power_type
    if args.congestion_range:
        extra["congestionRange"] = args.congestion_range
    if args.has_congestion_quota:
        extra["hasCongestionQuota"] = "true"
    if args.session_id:
        extra["sessionId"] = args.session_id

    summary = execute_route_batch(
        load_pairs_from_csv(args.input_csv),
        modes=parse_modes(args.modes),
        backend_url=args.backend_url,
        extra_params=extra,
    )

    summary_file = (
        Path(args.summary_path)
        if args.summary_path
        else Path(args.save_dir) / f"route_batch_{_utc_now_compact()}.json"
    )
    summary_file.parent.mkdir(parents=True, exist_ok=True)
    summary_file.write_text(json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8")
    print(json.dumps({k: v for k, v in summary.items() if k != "results"}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
