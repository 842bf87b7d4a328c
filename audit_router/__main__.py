from __future__ import annotations

import argparse
import os

import uvicorn

from .config import settings


def main() -> int:
    p = argparse.ArgumentParser(description="compliance-audit-router alert intake server")
    p.add_argument("--host", default=settings.listen_host, help="address to bind to")
    p.add_argument("--port", type=int, default=settings.listen_port, help="port to bind to")
    p.add_argument("--reload", action="store_true", help="reload on code changes (development only)")
    p.add_argument("--verbose", action="store_true", help="log route registration and stage transitions")
    args = p.parse_args()

    if args.verbose:
        # the reload worker builds its own Settings from the environment
        os.environ["VERBOSE"] = "true"
        settings.verbose = True

    uvicorn.run(
        "audit_router.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
