"""Run the API server: ``python -m ragchat``."""

import argparse

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the ragchat API")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8080, help="Bind port")
    parser.add_argument(
        "--reload", action="store_true", help="Reload on source changes (dev only)"
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    # setup_logging already configures the uvicorn loggers
    uvicorn.run(
        "ragchat.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
