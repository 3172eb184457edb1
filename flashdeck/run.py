"""
Backend runner for flashdeck.

    flashdeck-api --host 0.0.0.0 --port 8000
"""
import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the flashdeck API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    print(f"\n[INFO] Starting backend server on port {args.port}...")
    uvicorn.run("flashdeck.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
