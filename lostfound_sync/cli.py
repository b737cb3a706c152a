from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Sequence

from .config import RuntimeSecrets, load_config, resolve_runtime_secrets
from .config_schema import ALL_TAB, AppConfig
from .errors import ConfigError, StorageError, SyncError
from .feeds import FEED_NAMES
from .list_controller import ListState, open_feed
from .notifications import NotificationFeed
from .page_schema import record_to_wire
from .persistence import SQLiteSnapshotStore
from .remote import HttpRemoteCollection, RemoteCollection
from .retry import RetryConfig, RetryEvent
from .run_log import RunLogger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lostfound_sync")

    subparsers = parser.add_subparsers(dest="command", required=True)

    feed = subparsers.add_parser(
        "feed",
        help="Load pages of one list feed and print the filtered view.",
    )
    feed.add_argument("--config", required=True, help="Path to YAML config file.")
    feed.add_argument("--feed", required=True, choices=FEED_NAMES, help="Feed to load.")
    feed.add_argument("--pages", type=int, default=1, help="Number of pages to load.")
    feed.add_argument("--building", default=None, help="Building tab (default: All).")
    feed.add_argument("--days", type=int, default=None, help="Only items from the last N days.")
    feed.add_argument(
        "--offline",
        action="store_true",
        help="Serve pages from a small built-in data set instead of the API.",
    )
    feed.add_argument("--out", default=None, help="Directory for run.log.")
    feed.set_defaults(_handler=_cmd_feed)

    noti = subparsers.add_parser(
        "notifications",
        help="Restore the saved notification list, refresh it and save it again.",
    )
    noti.add_argument("--config", required=True, help="Path to YAML config file.")
    noti.add_argument(
        "--offline",
        action="store_true",
        help="Serve pages from a small built-in data set instead of the API.",
    )
    noti.add_argument(
        "--out",
        default=None,
        help="Directory for run.log and the snapshot database (overrides persistence.snapshot_path).",
    )
    noti.set_defaults(_handler=_cmd_notifications)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _open_log(out: str | None) -> contextlib.AbstractContextManager[RunLogger | None]:
    if out is None:
        return contextlib.nullcontext(None)
    out_dir = Path(out)
    out_dir.mkdir(parents=True, exist_ok=True)
    return RunLogger.open(out_dir / "run.log", overwrite=True)


def _make_remote(
    cfg: AppConfig,
    secrets: RuntimeSecrets,
    *,
    offline: bool,
    log: RunLogger | None,
) -> RemoteCollection:
    if offline:
        from .offline import offline_remote

        return offline_remote(cfg.endpoints)

    def _on_retry(event: RetryEvent) -> None:
        if log is not None:
            log.warning("remote_retry", **dataclasses.asdict(event))

    return HttpRemoteCollection(
        cfg.api.base_url,
        token=secrets.api_token,
        timeout_seconds=cfg.api.timeout_seconds,
        retry=RetryConfig(max_attempts=cfg.api.max_attempts),
        on_retry=_on_retry,
    )


async def _close_remote(remote: RemoteCollection) -> None:
    if isinstance(remote, HttpRemoteCollection):
        await remote.aclose()


def _print_records(records: Sequence[Any]) -> None:
    for r in records:
        print(json.dumps(record_to_wire(r), ensure_ascii=False, sort_keys=True))


def _raise_if_failed(state: ListState) -> None:
    if state.error is not None:
        raise state.error


async def _run_feed(args: argparse.Namespace, cfg: AppConfig, remote: RemoteCollection, log: RunLogger | None) -> int:
    controller = open_feed(cfg, remote, args.feed, logger=log)
    criteria = dataclasses.replace(
        controller.criteria,
        tab=args.building or ALL_TAB,
        days=args.days,
    )

    await controller.load_first(criteria)
    for _ in range(max(0, int(args.pages) - 1)):
        if not controller.state().has_more:
            break
        await controller.load_more()

    state = controller.state()
    controller.close()
    _raise_if_failed(state)

    _print_records(controller.view())
    print(f"items={len(state.items)}")
    print(f"total={controller.store.total_count}")
    print(f"has_more={str(state.has_more).lower()}")
    return 0


def _cmd_feed(args: argparse.Namespace) -> int:
    with _open_log(args.out) as log:
        if log is not None:
            log.info("feed_command_started", config_path=str(args.config), feed=args.feed)

        try:
            cfg = load_config(args.config)
            if args.building is not None and args.building not in cfg.buildings:
                raise ConfigError(
                    f"Unknown building tab: {args.building} (known: {', '.join(cfg.buildings)})"
                )
            secrets = resolve_runtime_secrets(cfg, required=not args.offline)

            async def _main() -> int:
                remote = _make_remote(cfg, secrets, offline=args.offline, log=log)
                try:
                    return await _run_feed(args, cfg, remote, log)
                finally:
                    await _close_remote(remote)

            return asyncio.run(_main())
        except Exception as e:
            if log is not None:
                log.exception("feed_command_failed", exc=e)
            raise


async def _run_notifications(
    cfg: AppConfig,
    remote: RemoteCollection,
    storage: SQLiteSnapshotStore,
    log: RunLogger | None,
) -> int:
    feed = NotificationFeed(remote, cfg, storage=storage, logger=log)
    restored = feed.hydrate()

    await feed.load_first()
    await feed.flush()

    state = feed.state()
    feed.close()

    print(f"restored={restored}")
    _raise_if_failed(state)

    _print_records(feed.view())
    print(f"items={len(state.items)}")
    print(f"unread={feed.unread_count()}")
    return 0


def _cmd_notifications(args: argparse.Namespace) -> int:
    with _open_log(args.out) as log:
        if log is not None:
            log.info("notifications_command_started", config_path=str(args.config))

        try:
            cfg = load_config(args.config)
            secrets = resolve_runtime_secrets(cfg, required=not args.offline)

            if args.out is not None:
                db_path = Path(args.out) / "snapshots.sqlite"
            else:
                db_path = Path(cfg.persistence.snapshot_path)

            with SQLiteSnapshotStore.open(db_path) as storage:

                async def _main() -> int:
                    remote = _make_remote(cfg, secrets, offline=args.offline, log=log)
                    try:
                        return await _run_notifications(cfg, remote, storage, log)
                    finally:
                        await _close_remote(remote)

                return asyncio.run(_main())
        except Exception as e:
            if log is not None:
                log.exception("notifications_command_failed", exc=e)
            raise


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (SyncError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
