"""CLI commands for the podcast sync client.

Provides commands for:
- Logging in to a gpodder-compatible sync server
- Subscribing to and unsubscribing from feeds
- Listing episodes and recording playback progress
- Running one sync cycle, or the foreground sync timer
- Viewing sync status
"""

import argparse
import getpass
import logging
import sys

from apscheduler.schedulers.blocking import BlockingScheduler

from ..argparse_shared import (
    add_interval_argument,
    add_log_level_argument,
    add_mode_argument,
    get_base_parser,
)
from ..config import Config
from ..db.factory import create_repository_from_config
from ..errors import AuthError, NetworkError, ParseError, PodsyncError
from ..sync.base import SyncMode
from ..sync.factory import create_sync_engine
from ..sync.scheduler import SyncScheduler

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def login(args, config: Config):
    """
    Authenticate against a sync server and store the session.

    The password is taken from `--password`, then SYNC_PASSWORD, and is
    prompted for when neither is set. It is never written to the database.
    """
    password = args.password or config.SYNC_PASSWORD or getpass.getpass("Password: ")
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        try:
            session = engine.sessions.login(args.server, args.username, password)
        except (AuthError, NetworkError) as e:
            print(f"Login failed: {e}")
            sys.exit(1)

        print(f"\nLogged in as {session.username} on {session.server_url}")
        print(f"  Device: {session.device_id}")

    finally:
        repository.close()


def logout(args, config: Config):
    """Forget the stored session token."""
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        engine.sessions.logout()
        print("Logged out")
    finally:
        repository.close()


def subscribe(args, config: Config):
    """
    Subscribe to a feed URL.

    Fetches and merges the feed, then queues the subscription for the server.
    Exits with status 1 if the feed cannot be fetched or parsed.
    """
    logger.info(f"Subscribing to: {args.url}")
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        try:
            podcast = engine.subscribe(args.url)
        except (NetworkError, ParseError) as e:
            print(f"Error: {e}")
            sys.exit(1)

        episodes = repository.list_episodes(podcast.feed_url)
        print(f"\nSubscribed to: {podcast.title}")
        print(f"  Feed: {podcast.feed_url}")
        print(f"  Episodes: {len(episodes)}")

    finally:
        repository.close()


def unsubscribe(args, config: Config):
    """Unsubscribe from a feed URL; its episodes are kept."""
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        try:
            podcast = engine.unsubscribe(args.url)
        except LookupError:
            print(f"Podcast not found: {args.url}")
            sys.exit(1)

        print(f"Unsubscribed from: {podcast.title}")

    finally:
        repository.close()


def list_podcasts(args, config: Config):
    """
    Print a table of podcasts with their unplayed episode counts.

    Honors `args.all` (include unsubscribed podcasts) and `args.limit`.
    """
    repository = create_repository_from_config(config)

    try:
        podcasts = repository.list_podcasts(subscribed_only=not args.all, limit=args.limit)

        if not podcasts:
            print("No podcasts found")
            return

        print(f"\n{'Title':<40}  {'Unplayed':<10}  {'Status':<14}  {'Feed'}")
        print("-" * 100)

        for podcast in podcasts:
            status = "Subscribed" if podcast.is_subscribed else "Unsubscribed"
            if podcast.last_refresh_error:
                status += " (!)"
            print(
                f"{podcast.title[:40]:<40}  "
                f"{repository.count_unplayed(podcast.feed_url):<10}  "
                f"{status:<14}  "
                f"{podcast.feed_url}"
            )

        print(f"\nTotal: {len(podcasts)} podcasts")

    finally:
        repository.close()


def list_episodes(args, config: Config):
    """Print the episodes of one feed with the ids `progress` expects."""
    repository = create_repository_from_config(config)

    try:
        if repository.get_podcast(args.url) is None:
            print(f"Podcast not found: {args.url}")
            sys.exit(1)

        episodes = repository.list_episodes(args.url)
        if args.limit:
            episodes = episodes[: args.limit]

        if not episodes:
            print("No episodes found")
            return

        print(f"\n{'ID':<64}  {'Position':<10}  {'Title'}")
        print("-" * 120)

        for episode in episodes:
            position = "played" if episode.is_played else f"{episode.playback_position:.0f}s"
            print(f"{episode.id:<64}  {position:<10}  {episode.title[:50]}")

        print(f"\nTotal: {len(episodes)} episodes")

    finally:
        repository.close()


def record_progress(args, config: Config):
    """Record a playback position for an episode and queue it for the server."""
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        try:
            action = engine.record_progress(args.episode_id, args.position, args.completed)
        except (LookupError, ValueError) as e:
            print(f"Error: {e}")
            sys.exit(1)

        state = "completed" if action.completed else f"at {action.position:.0f}s"
        print(f"Recorded {args.episode_id} {state}")

    finally:
        repository.close()


def sync(args, config: Config):
    """Run a single sync cycle and print its result.

    Exits with status 1 when the cycle failed.
    """
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        result = engine.perform_sync(SyncMode(args.mode))

        print(f"\nSync {result.mode.value}: {result.status.value}")
        print(f"  Feeds: {result.feeds_synced}/{result.feeds_attempted} refreshed")
        print(f"  New episodes: {result.new_episodes}")
        print(
            f"  Subscriptions: +{result.subscriptions_added} "
            f"-{result.subscriptions_removed}, {result.subscriptions_pushed} pushed"
        )
        print(f"  Episode actions: {result.actions_pulled} pulled, {result.actions_pushed} pushed")

        for feed_url, error in result.feed_errors.items():
            print(f"  - {feed_url}: {error}")
        if result.error:
            print(f"  Error: {result.error}")

        if result.status.is_failure:
            sys.exit(1)

    finally:
        repository.close()


def show_status(args, config: Config):
    """Print the persisted sync state and the pending action counts."""
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        state = repository.get_sync_state()
        server = engine.sessions.configuration()

        print("\nSync Server:")
        if server.is_configured:
            authenticated = "yes" if server.is_authenticated else "no"
            print(f"  {server.username} on {server.server_url}")
            print(f"  Device: {server.device_id}")
            print(f"  Authenticated: {authenticated}")
        else:
            print("  Not configured (local only)")

        print("\nSync State:")
        print(f"  Syncing: {'yes' if state.is_syncing else 'no'}")
        print(f"  Last attempt: {state.last_sync_attempt or 'never'}")
        print(f"  Last status: {state.last_sync_status or 'n/a'}")
        if state.last_sync_error:
            print(f"  Last error: {state.last_sync_error}")
        print(f"  Last full sync: {state.last_full_sync or 'never'}")
        print(f"  Last subscription sync: {state.last_subscription_sync or 'never'}")
        print(f"  Last progress sync: {state.last_progress_sync or 'never'}")
        print(f"  Total syncs: {state.total_syncs} ({state.failed_syncs} failed)")
        print(f"  Consecutive smart failures: {state.consecutive_smart_failures}")

        print("\nPending Actions:")
        print(f"  Playback: {engine.queue.pending_count(kind='play')}")
        print(f"  Subscriptions: {engine.queue.pending_count(kind='subscription')}")

    finally:
        repository.close()


def run_scheduler(args, config: Config):
    """
    Run the foreground sync timer until interrupted.

    Performs a full sync immediately, then a smart sync every interval.
    """
    repository = create_repository_from_config(config)

    try:
        engine = create_sync_engine(config, repository=repository)
        scheduler = SyncScheduler(
            engine,
            interval_seconds=args.interval,
            scheduler=BlockingScheduler(),
        )

        print("Press Ctrl+C to exit.")
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            scheduler.shutdown(wait=False)

    finally:
        repository.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = get_base_parser()
    add_log_level_argument(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    login_parser = subparsers.add_parser("login", help="Log in to a sync server")
    login_parser.add_argument("server", help="Server URL, e.g. https://gpodder.net")
    login_parser.add_argument("username", help="Account name")
    login_parser.add_argument(
        "--password",
        help="Account password (prompted for when omitted)",
        default=None,
    )

    subparsers.add_parser("logout", help="Forget the stored session")

    # subscription commands
    subscribe_parser = subparsers.add_parser("subscribe", help="Subscribe to a feed URL")
    subscribe_parser.add_argument("url", help="RSS feed URL")

    unsubscribe_parser = subparsers.add_parser("unsubscribe", help="Unsubscribe from a feed URL")
    unsubscribe_parser.add_argument("url", help="RSS feed URL")

    list_parser = subparsers.add_parser("list", help="List podcasts")
    list_parser.add_argument(
        "--all",
        action="store_true",
        help="Include unsubscribed podcasts",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of podcasts to list",
    )

    episodes_parser = subparsers.add_parser("episodes", help="List the episodes of a feed")
    episodes_parser.add_argument("url", help="RSS feed URL")
    episodes_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of episodes to list",
    )

    # progress command
    progress_parser = subparsers.add_parser("progress", help="Record playback progress")
    progress_parser.add_argument("episode_id", help="Episode id, as printed by the episodes command")
    progress_parser.add_argument("position", type=float, help="Position in seconds")
    progress_parser.add_argument(
        "--completed",
        action="store_true",
        help="Mark the episode as played",
    )

    # sync commands
    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle")
    add_mode_argument(sync_parser)

    subparsers.add_parser("status", help="Show sync status")

    run_parser = subparsers.add_parser("run", help="Run the periodic sync timer")
    add_interval_argument(run_parser)

    return parser


def main():
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.getLogger().setLevel(args.log_level.upper())
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # Load configuration
    try:
        config = Config(env_file=args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    # Route to appropriate command
    commands = {
        "login": login,
        "logout": logout,
        "subscribe": subscribe,
        "unsubscribe": unsubscribe,
        "list": list_podcasts,
        "episodes": list_episodes,
        "progress": record_progress,
        "sync": sync,
        "status": show_status,
        "run": run_scheduler,
    }

    command_func = commands.get(args.command)
    if command_func:
        try:
            command_func(args, config)
        except PodsyncError as e:
            logger.error(f"{args.command} failed: {e}")
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
