"""
命令行入口：python -m droidfleet
"""
import uvicorn

from .core.config import settings


def main():
    uvicorn.run("droidfleet.main:app", host=settings.api_host, port=settings.api_port, log_level="info")


if __name__ == "__main__":
    main()
