from __future__ import annotations

import argparse
import base64
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _b64_file(path: str | None) -> str | None:
    if not path:
        return None
    with open(path, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="poolsync CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("instances", help="List instances")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--instance")

    s_apply = sub.add_parser("apply", help="Start or update an instance")
    s_apply.add_argument("--name", required=True)
    s_apply.add_argument("--endpoint", required=True, help="Kubernetes API base URL")
    s_apply.add_argument("--namespace", required=True)
    s_apply.add_argument("--service", required=True)
    s_apply.add_argument("--pool", required=True)
    s_apply.add_argument("--pool-type", default="round-robin")
    s_apply.add_argument("--monitor")
    s_apply.add_argument("--interval", type=int, help="Poll interval in seconds (min 10, default 30)")
    s_apply.add_argument("--client-cert", help="Path to client certificate (PEM)")
    s_apply.add_argument("--client-key", help="Path to client key (PEM)")
    s_apply.add_argument("--ca-cert", help="Path to cluster CA certificate (PEM)")

    s_del = sub.add_parser("delete", help="Stop an instance and remove its pool")
    s_del.add_argument("--name", required=True)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "instances":
        _print(requests.get(f"{base}/instances", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.instance:
            params["instance"] = args.instance
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "apply":
        payload = {
            "name": args.name,
            "endpoint": args.endpoint,
            "namespace": args.namespace,
            "service_name": args.service,
            "pool": args.pool,
            "pool_type": args.pool_type,
            "health_monitor": args.monitor,
            "poll_interval_s": args.interval,
        }
        if args.client_cert or args.client_key or args.ca_cert:
            payload["auth"] = {
                "client_cert": _b64_file(args.client_cert),
                "client_key": _b64_file(args.client_key),
                "ca_cert": _b64_file(args.ca_cert),
            }
        r = requests.post(f"{base}/instances", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        r = requests.delete(f"{base}/instances/{args.name}", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
