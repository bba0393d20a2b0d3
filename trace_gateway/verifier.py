#!/usr/bin/env python3
"""
verifier.py - Standalone product verifier.

Runs independently of the gateway process and talks to it over HTTP:
- Verifies product codes against the on-chain registry (/verify)
- Fetches the merged trace history of a product (/trace)
- Sweeps every product the gateway knows about and reports which ones
  are missing on chain

Without --user-id the public endpoints are used.

Verification modes:
  codes <id>...   - verify the given product codes
  trace <id>      - print the trace history of one product
  all-products    - verify every product listed by /products

Output: JSON + CSV to <out>/verify_<timestamp>.{json,csv}
"""
from __future__ import annotations

import argparse
import csv
import json
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests


DEFAULT_GATEWAY = os.getenv("GATEWAY_URL", "http://localhost:8000")


def build_session(user_id: Optional[str] = None) -> requests.Session:
    s = requests.Session()
    if user_id:
        s.headers["X-User-Id"] = user_id
    return s


def _prefix(session: requests.Session) -> str:
    return "" if "X-User-Id" in session.headers else "/public"


def api(session: requests.Session, base_url: str, path: str, **kwargs) -> Any:
    resp = session.get(f"{base_url}{path}", timeout=15, **kwargs)
    resp.raise_for_status()
    return resp.json()


def verify_code(session: requests.Session, base_url: str, code: str) -> Dict[str, Any]:
    """Call the gateway's verify endpoint and flatten the answer into one row."""
    t0 = time.monotonic()
    resp = session.get(f"{base_url}{_prefix(session)}/verify", params={"code": code}, timeout=20)
    elapsed = (time.monotonic() - t0) * 1000
    resp.raise_for_status()
    body = resp.json()

    chain = body.get("blockchainData") or {}
    database = body.get("databaseData") or {}
    return {
        "product_id": code,
        "verdict": "PASS" if body.get("verified") else "FAIL",
        "name": chain.get("name", ""),
        "chain_status": chain.get("status", ""),
        "store_status": database.get("blockchainStatus", ""),
        "reason": body.get("message") or body.get("note") or "",
        "verify_ms": round(elapsed, 2),
    }


def trace_code(session: requests.Session, base_url: str, code: str) -> Optional[Dict[str, Any]]:
    """Trace view of a product, or None when it is not on chain."""
    resp = session.get(f"{base_url}{_prefix(session)}/trace", params={"code": code}, timeout=20)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    return resp.json()


def write_outputs(out_dir: Path, ts: str, results: List[Dict[str, Any]], prefix: str = "verify") -> None:
    out_json = out_dir / f"{prefix}_{ts}.json"
    out_json.write_text(json.dumps(results, indent=2, ensure_ascii=False))

    if not results:
        print(f"Results -> {out_json}")
        return

    out_csv = out_dir / f"{prefix}_{ts}.csv"
    keys = sorted({k for r in results for k in r})
    with open(out_csv, "w", newline="") as f:
        w = csv.DictWriter(f, fieldnames=keys)
        w.writeheader()
        for r in results:
            w.writerow({k: r.get(k, "") for k in keys})

    passed = sum(1 for r in results if r.get("verdict") == "PASS")
    print(f"\nTotal: {len(results)}  PASS: {passed}  FAIL: {len(results) - passed}")
    print(f"Results -> {out_json}  {out_csv}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Product Trace Verifier")
    parser.add_argument("mode", choices=["codes", "trace", "all-products"], help="Verification mode")
    parser.add_argument("ids", nargs="*", help="Product codes (for 'codes' and 'trace' modes)")
    parser.add_argument("--gateway", default=DEFAULT_GATEWAY, help="Gateway base URL")
    parser.add_argument("--user-id", default=os.getenv("VERIFIER_USER_ID"),
                        help="Caller identity; required for 'all-products'")
    parser.add_argument("--out", default="results", help="Output directory for CSV/JSON")
    args = parser.parse_args(argv)

    session = build_session(args.user_id)
    gateway = args.gateway.rstrip("/")

    try:
        h = session.get(f"{gateway}/health", timeout=5).json()
        print(f"Gateway: {gateway}  blockchain={h.get('blockchain', {}).get('phase')}")
    except Exception as exc:
        print(f"Cannot reach gateway: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.mode == "trace":
        if len(args.ids) != 1:
            sys.exit("Provide one product code: verifier trace <product_id>")
        view = trace_code(session, gateway, args.ids[0])
        if view is None:
            sys.exit(f"Product {args.ids[0]} not found on blockchain")
        print(json.dumps(view, indent=2, ensure_ascii=False))
        return

    if args.mode == "all-products":
        if not args.user_id:
            sys.exit("all-products needs --user-id")
        codes = [p["id"] for p in api(session, gateway, "/products")["products"]]
        print(f"Verifying {len(codes)} products...")
    else:
        if not args.ids:
            sys.exit("Provide product codes: verifier codes <product_id> [...]")
        codes = args.ids

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")

    results: List[Dict[str, Any]] = []
    for code in codes:
        r = verify_code(session, gateway, code)
        results.append(r)
        print(f"  {code[:40]:40s}  {r['verdict']:5s}  {r['reason'][:50]}")

    write_outputs(out_dir, ts, results)


if __name__ == "__main__":
    main()
