"""Command-line interface for publishing CAR archive indexes."""

from __future__ import annotations

import argparse
import contextlib
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator, Sequence

from multiformats import CID

from ..archive import open_index
from ..chain import EntryChainBuilder, iter_batches
from ..errors import IndexProviderError
from ..ingest import HttpPublishClient, InMemoryIngestService, PublishClient
from ..services import AdvertisementPublisher, PublishRequest, PublishResult, context_id_for
from ..settings import AppConfig, load_config
from ..utils.logging import configure_logging, get_logger
from .history import PublishHistory, PublishHistoryStore, PublishRecord

LOGGER = get_logger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(structured=not args.log_plain)

    handler: Callable[[argparse.Namespace], int] | None = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return 1
    try:
        return handler(args)
    except IndexProviderError as exc:
        LOGGER.error(
            "Command failed",
            extra={
                "event": "cli.error",
                "command": args.command,
                "error_type": type(exc).__name__,
                "details": exc.details,
            },
        )
        print(f"error: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="index-provider", description="Publish CAR archive indexes as advertisements"
    )
    parser.add_argument("--config", help="Path to configuration file", default=None)
    parser.add_argument(
        "--log-plain",
        action="store_true",
        help="Use plain-text logs instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command")

    _add_publish_commands(subparsers)
    _add_inspect_commands(subparsers)

    return parser


def _cid_arg(value: str) -> CID:
    try:
        return CID.decode(value)
    except (KeyError, ValueError) as exc:
        raise argparse.ArgumentTypeError(f"invalid CID: {value!r}") from exc


def _int_arg(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value!r}")
    return number


def _hex_arg(value: str) -> bytes:
    text = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid hex payload: {value!r}") from exc


def _add_provider_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--provider-id", help="Provider peer ID; defaults to config")
    parser.add_argument(
        "--address",
        action="append",
        dest="addresses",
        metavar="MULTIADDR",
        help="Provider address (repeatable); defaults to config",
    )
    parser.add_argument("--metadata-hex", type=_hex_arg, help="Hex metadata payload")
    parser.add_argument("--protocol-id", type=_int_arg, help="Metadata protocol identifier")
    parser.add_argument(
        "--previous",
        type=_cid_arg,
        help="Previous advertisement CID; defaults to the last recorded publish",
    )
    parser.add_argument("--endpoint", help="Ingest service base URL; defaults to config")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Publish against an in-process ingest service",
    )


def _add_publish_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    publish_parser = subparsers.add_parser("publish", help="Announce the contents of a CAR file")
    publish_parser.add_argument("--car-file", required=True, type=Path, help="CAR archive to index")
    publish_parser.add_argument(
        "--context-id",
        help="Context ID for the advertisement; defaults to the CAR path"
        " (hashed when longer than 64 bytes)",
    )
    publish_parser.add_argument(
        "--chunk-size", type=_positive_int, help="Multihashes per entry chunk"
    )
    _add_provider_arguments(publish_parser)
    publish_parser.set_defaults(handler=_handle_publish)

    remove_parser = subparsers.add_parser(
        "remove", help="Retract everything announced under a context ID"
    )
    remove_parser.add_argument("--context-id", required=True, help="Context ID to retract")
    _add_provider_arguments(remove_parser)
    remove_parser.set_defaults(handler=_handle_remove)


def _add_inspect_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    inspect_parser = subparsers.add_parser(
        "inspect", help="Show how a CAR file would be chunked, without publishing"
    )
    inspect_parser.add_argument("--car-file", required=True, type=Path, help="CAR archive to index")
    inspect_parser.add_argument(
        "--chunk-size", type=_positive_int, help="Multihashes per entry chunk"
    )
    inspect_parser.add_argument(
        "--format",
        choices=("json", "table"),
        default="json",
        help="Output format",
    )
    inspect_parser.set_defaults(handler=_handle_inspect)

    history_parser = subparsers.add_parser("history", help="Show recorded publishes")
    history_parser.add_argument("--provider-id", help="Limit output to one provider")
    history_parser.add_argument(
        "--format",
        choices=("json", "table"),
        default="json",
        help="Output format",
    )
    history_parser.set_defaults(handler=_handle_history)


def _handle_publish(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    context_id = args.context_id or str(args.car_file)
    request = _build_request(config, args, context_id=context_id)
    LOGGER.info(
        "Publishing CAR file",
        extra={
            "event": "cli.command",
            "command": "publish",
            "path": str(args.car_file),
            "provider": request.provider,
            "dry_run": args.dry_run,
        },
    )
    with _open_client(config, args) as client:
        publisher = _publisher_for(config, client, chunk_size=args.chunk_size)
        result = publisher.publish_archive(args.car_file, request)
    _record(config, args, request, result, context_id=context_id)
    print(result.advertisement_id)
    return 0


def _handle_remove(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    request = _build_request(config, args, context_id=args.context_id)
    LOGGER.info(
        "Publishing removal",
        extra={
            "event": "cli.command",
            "command": "remove",
            "context_id": args.context_id,
            "provider": request.provider,
            "dry_run": args.dry_run,
        },
    )
    with _open_client(config, args) as client:
        result = _publisher_for(config, client).publish_removal(request)
    _record(config, args, request, result, context_id=args.context_id, is_rm=True)
    print(result.advertisement_id)
    return 0


def _handle_inspect(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    chunk_size = args.chunk_size if args.chunk_size is not None else config.ingest.chunk_size
    source = open_index(args.car_file)
    builder = EntryChainBuilder(
        hash_function=config.ingest.hash_function,
        spool_max_memory=config.ingest.spool_max_memory,
    )
    with builder.build(iter_batches(source.multihashes(), chunk_size)) as chain:
        summary = {
            "path": str(args.car_file),
            "index": "regenerated" if source.regenerated else "embedded",
            "chunk_size": chunk_size,
            "entry_count": chain.entry_count,
            "chunk_count": chain.chunk_count,
            "entries_root": str(chain.root),
        }

    if args.format == "table":
        width = max(len(key) for key in summary)
        for key, value in summary.items():
            print(key.ljust(width), value, sep="  ")
    else:
        print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0


def _handle_history(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    store = PublishHistoryStore(config.paths.history_dir)
    if args.provider_id:
        histories = [store.load(args.provider_id)]
    else:
        histories = store.providers()
    histories = [history for history in histories if history.records]
    if not histories:
        LOGGER.warning(
            "No publishes recorded",
            extra={"event": "cli.command", "command": "history"},
        )
        print("<no-history>")
        return 0

    if args.format == "table":
        _print_history_table(histories)
    else:
        print(json.dumps([h.to_dict() for h in histories], ensure_ascii=False, indent=2))
    return 0


def _build_request(
    config: AppConfig, args: argparse.Namespace, *, context_id: str
) -> PublishRequest:
    provider = args.provider_id or config.provider.id
    if not provider:
        LOGGER.error(
            "No provider ID configured",
            extra={"event": "cli.error", "command": args.command},
        )
        raise SystemExit(2)
    metadata = config.provider.metadata_record()
    if args.protocol_id is not None:
        metadata = replace(metadata, protocol_id=args.protocol_id)
    if args.metadata_hex is not None:
        metadata = replace(metadata, data=args.metadata_hex)
    return PublishRequest(
        provider=provider,
        addresses=list(args.addresses or config.provider.addresses),
        context_id=context_id_for(context_id),
        metadata=metadata,
        previous_id=_resolve_previous(config, args, provider),
    )


def _resolve_previous(config: AppConfig, args: argparse.Namespace, provider: str) -> CID | None:
    if args.previous is not None:
        return args.previous
    if args.dry_run:
        # the in-process service starts without a head
        return None
    head = PublishHistoryStore(config.paths.history_dir).load(provider).head
    return CID.decode(head) if head else None


@contextlib.contextmanager
def _open_client(config: AppConfig, args: argparse.Namespace) -> Iterator[PublishClient]:
    if args.dry_run:
        yield InMemoryIngestService(hash_function=config.ingest.hash_function)
        return
    endpoint = args.endpoint or config.ingest.endpoint
    with HttpPublishClient(endpoint, timeout=config.http.timeout) as client:
        yield client


def _publisher_for(
    config: AppConfig, client: PublishClient, *, chunk_size: int | None = None
) -> AdvertisementPublisher:
    return AdvertisementPublisher(
        client,
        chunk_size=chunk_size or config.ingest.chunk_size,
        hash_function=config.ingest.hash_function,
        spool_max_memory=config.ingest.spool_max_memory,
    )


def _record(
    config: AppConfig,
    args: argparse.Namespace,
    request: PublishRequest,
    result: PublishResult,
    *,
    context_id: str,
    is_rm: bool = False,
) -> None:
    if args.dry_run:
        return
    store = PublishHistoryStore(config.paths.history_dir)
    store.record(
        request.provider,
        PublishRecord(
            advertisement_id=str(result.advertisement_id),
            previous_id=str(request.previous_id) if request.previous_id is not None else None,
            context_id=context_id,
            is_rm=is_rm,
            entry_count=result.entry_count,
            chunk_count=result.chunk_count,
            endpoint=args.endpoint or config.ingest.endpoint,
        ),
    )


def _print_history_table(histories: Sequence[PublishHistory]) -> None:
    for history in histories:
        print(f"[{history.provider}]")
        for record in history.records:
            kind = "remove" if record.is_rm else "publish"
            print(
                record.published_at,
                kind.ljust(7),
                record.advertisement_id,
                f"entries={record.entry_count}",
                f"context={record.context_id}",
                sep="  ",
            )


__all__ = ["main"]
