import argparse

from .sync.base import SyncMode


def get_base_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Podcast subscription and playback sync client")
    parser.add_argument("-e", "--env-file", help="Path to a custom .env file", default=None)
    return parser

def add_log_level_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-l", "--log-level", help="Set log level (DEBUG, INFO, WARNING, ERROR)", default="INFO")

def add_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-m", "--mode",
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.SMART.value,
        help="Sync mode: full refreshes every feed, smart only stale ones",
    )

def add_interval_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-i", "--interval", type=int, default=None, help="Smart sync interval in seconds")
