import os

import uvicorn


def main() -> None:
    host = os.getenv("SONOSCAST_BIND", "0.0.0.0")
    port = int(os.getenv("SONOSCAST_PORT", "8000"))
    uvicorn.run(
        "sonoscast.main:app",
        host=host,
        port=port,
        reload=False,
        log_level=os.getenv("SONOSCAST_LOG_LEVEL", "info"),
    )


if __name__ == "__main__":
    main()
