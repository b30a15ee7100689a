"""Run the push endpoint and the worker pool until interrupted."""

from __future__ import annotations

import argparse
import os

import uvicorn


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    args = parser.parse_args(argv)

    # Single process: the pool and the idempotency claims live in memory.
    uvicorn.run("backend.app.main:app", host=args.host, port=args.port, workers=1)


if __name__ == "__main__":
    main()
