"""CLI interface for pys4."""

import logging
import os
from datetime import datetime
from importlib import metadata
from pathlib import Path
from typing import Any, Optional

import click

from .api import S3Client
from .config import AliasConfig, Config, config
from .exceptions import S4ConfigError, S4Error
from .models import Scope
from .output import OutputFormatter
from .retry import RetryPolicy
from .sync import (
    LocalStore,
    ObjectLister,
    ObjectStore,
    RemoteStore,
    SyncEngine,
    SyncOptions,
    SyncPair,
    TransferExecutor,
    WatchContext,
    WatchLoop,
    cancel_on_signals,
    parse_target,
)
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PART_WORKERS,
    DEFAULT_TIMEOUT,
    DEFAULT_WATCH_INTERVAL,
    DEFAULT_WORKERS,
    format_size,
    join_key,
)

logger = logging.getLogger(__name__)


def _format_time(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _get_config(ctx: Any) -> Config:
    return ctx.obj["config"]


def _get_client(ctx: Any, alias_name: str) -> S3Client:
    """Return the (cached) client of an alias."""
    clients: dict[str, S3Client] = ctx.obj["clients"]
    if alias_name not in clients:
        alias = _get_config(ctx).get_alias(alias_name)
        clients[alias_name] = S3Client.from_alias(
            alias, timeout=ctx.obj["timeout"], verify=not ctx.obj["insecure"]
        )
    return clients[alias_name]


def _remote_scope(ctx: Any, value: str, need_bucket: bool = True) -> Scope:
    """Parse a target that must be ``alias[/bucket[/key]]``."""
    scope = parse_target(value, _get_config(ctx).load_aliases())
    if scope.is_local:
        alias_name = value.split("/", 1)[0]
        raise S4ConfigError(
            f"Unknown alias: {alias_name} (expected alias/bucket[/key], "
            "see 's4 alias ls')"
        )
    if need_bucket and not scope.bucket:
        raise S4ConfigError(f"Target {value} must include a bucket")
    return scope


def _raw_key(value: str) -> str:
    """Key part of ``alias/bucket/key`` exactly as typed."""
    parts = value.split("/", 2)
    return parts[2] if len(parts) > 2 else ""


def _object_ref(ctx: Any, value: str) -> tuple[ObjectStore, str, Scope]:
    """Resolve a single-object argument to a store and a key in it."""
    scope = parse_target(value, _get_config(ctx).load_aliases())
    if scope.is_local:
        path = scope.path
        return LocalStore(path.parent), path.name, scope
    if not scope.bucket:
        raise S4ConfigError(f"Target {value} must include a bucket")
    client = _get_client(ctx, scope.alias)
    return RemoteStore(client, Scope.remote(scope.alias, scope.bucket)), scope.prefix, scope


def _dest_ref(ctx: Any, value: str, basename: str) -> tuple[ObjectStore, str, Scope]:
    """Resolve a copy target; directory-like targets get ``basename`` appended."""
    scope = parse_target(value, _get_config(ctx).load_aliases())
    if scope.is_local:
        path = scope.path
        if path.is_dir() or value.endswith(("/", os.sep)):
            return LocalStore(path), basename, scope
        return LocalStore(path.parent), path.name, scope
    if not scope.bucket:
        raise S4ConfigError(f"Target {value} must include a bucket")
    key = scope.prefix
    if not key or value.endswith("/"):
        key = join_key(key, basename)
    client = _get_client(ctx, scope.alias)
    return RemoteStore(client, Scope.remote(scope.alias, scope.bucket)), key, scope


def _copy(ctx: Any, source: str, target: str, move: bool = False) -> dict:
    """Copy (or move) one object between any two locations.

    Returns:
        Description of the transfer for output
    """
    retry: RetryPolicy = ctx.obj["retry"]
    src_store, src_key, src_scope = _object_ref(ctx, source)
    if not src_key:
        raise S4ConfigError(f"Source {source} must name an object")
    basename = src_key.rsplit("/", 1)[-1]
    dst_store, dst_key, dst_scope = _dest_ref(ctx, target, basename)

    entry = retry.call(lambda: src_store.stat(src_key), f"stat {source}")
    if (
        not src_scope.is_local
        and not dst_scope.is_local
        and src_scope.alias == dst_scope.alias
    ):
        # Same endpoint: let the server copy
        client = _get_client(ctx, src_scope.alias)
        retry.call(
            lambda: client.copy_object(src_scope.bucket, src_key, dst_scope.bucket, dst_key),
            f"copy {source}",
        )
    else:
        executor = TransferExecutor(
            src_store,
            dst_store,
            part_workers=DEFAULT_PART_WORKERS,
            retry=retry,
        )
        executor.copy_object(src_key, dst_key, entry.size, entry.last_modified)

    if move:
        retry.call(lambda: src_store.delete(src_key), f"delete {source}")

    return {
        "source": f"{src_store}/{src_key}" if not src_scope.is_local else source,
        "target": f"{dst_store}/{dst_key}",
        "size": entry.size,
    }


@click.group()
@click.option(
    "--config-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Configuration directory (default: ~/.config/s4 or $S4_CONFIG_DIR)",
)
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--debug",
    "--verbose",
    "-v",
    "verbose",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.option("--insecure", is_flag=True, help="Do not verify TLS certificates")
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_TIMEOUT,
    show_default=True,
    help="Per-request timeout in seconds",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_RETRIES,
    show_default=True,
    help="Retries for transient errors",
)
@click.version_option(package_name="pys4")
@click.pass_context
def main(
    ctx: Any,
    config_dir: Optional[Path],
    json: bool,
    quiet: bool,
    verbose: bool,
    insecure: bool,
    timeout: float,
    retries: int,
) -> None:
    """s4 - command-line client for S3-compatible object storage."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["config"] = Config(config_dir) if config_dir else config
    ctx.obj["insecure"] = insecure
    ctx.obj["timeout"] = timeout
    ctx.obj["retry"] = RetryPolicy(max_retries=retries)
    ctx.obj["clients"] = {}

    def close_clients() -> None:
        for client in ctx.obj["clients"].values():
            client.close()

    ctx.call_on_close(close_clients)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pys4").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


# =============================================================================
# Aliases
# =============================================================================


@main.group()
def alias() -> None:
    """Manage endpoint aliases."""


@alias.command("set")
@click.argument("name")
@click.argument("endpoint")
@click.argument("access_key")
@click.argument("secret_key")
@click.option("--region", default="us-east-1", show_default=True, help="Signing region")
@click.option(
    "--path-style",
    is_flag=True,
    help="Address buckets as endpoint/bucket instead of bucket.endpoint",
)
@click.pass_context
def alias_set(
    ctx: Any,
    name: str,
    endpoint: str,
    access_key: str,
    secret_key: str,
    region: str,
    path_style: bool,
) -> None:
    """Create or replace an alias.

    Example:
        s4 alias set minio http://localhost:9000 minioadmin minioadmin --path-style
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        _get_config(ctx).save_alias(
            name,
            AliasConfig(
                endpoint=endpoint,
                access_key=access_key,
                secret_key=secret_key,
                region=region,
                path_style=path_style,
            ),
        )
    except S4ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json({"status": "ok", "alias": name})
    else:
        out.success(f"Alias '{name}' saved")


@alias.command("ls")
@click.pass_context
def alias_ls(ctx: Any) -> None:
    """List configured aliases."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        aliases = _get_config(ctx).load_aliases()
    except S4ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(
            [
                {
                    "name": name,
                    "endpoint": a.endpoint,
                    "region": a.region,
                    "path_style": a.path_style,
                }
                for name, a in aliases.items()
            ]
        )
        return
    if not aliases:
        out.info("No aliases configured. Use 's4 alias set' to add one.")
        return
    out.table(
        [
            (name, a.endpoint, a.region, f"path_style={str(a.path_style).lower()}")
            for name, a in aliases.items()
        ]
    )


@alias.command("rm")
@click.argument("name")
@click.pass_context
def alias_rm(ctx: Any, name: str) -> None:
    """Remove an alias."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        existed = _get_config(ctx).remove_alias(name)
    except S4ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"status": "ok", "alias": name, "removed": existed})
    elif existed:
        out.success(f"Alias '{name}' removed")
    else:
        out.warning(f"Alias '{name}' not found")


# =============================================================================
# Buckets and objects
# =============================================================================


@main.command()
@click.argument("target")
@click.option("--recursive", "-r", is_flag=True, help="List all keys under the prefix")
@click.pass_context
def ls(ctx: Any, target: str, recursive: bool) -> None:
    """List buckets of an alias, or objects under alias/bucket[/prefix]."""
    out: OutputFormatter = ctx.obj["out"]
    retry: RetryPolicy = ctx.obj["retry"]

    try:
        scope = _remote_scope(ctx, target, need_bucket=False)
        client = _get_client(ctx, scope.alias)

        if not scope.bucket:
            buckets = retry.call(client.list_buckets, "list buckets")
            if out.json_output:
                out.output_json(buckets)
            else:
                out.table([(_format_time(b["created"]), f"{b['name']}/") for b in buckets])
            return

        prefix = _raw_key(target)
        objects = []
        prefixes = []
        token = None
        while True:
            page = retry.call(
                lambda: client.list_objects(
                    scope.bucket,
                    prefix=prefix,
                    continuation_token=token,
                    delimiter=None if recursive else "/",
                ),
                f"list {target}",
            )
            objects.extend(page.entries)
            prefixes.extend(page.prefixes)
            if page.is_last:
                break
            token = page.next_token
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(
            {
                "prefixes": prefixes,
                "objects": [
                    {
                        "key": o.key,
                        "size": o.size,
                        "last_modified": o.last_modified,
                        "etag": o.etag,
                    }
                    for o in objects
                ],
            }
        )
        return

    rows = [("", "PRE", p) for p in prefixes]
    rows.extend(
        (_format_time(o.last_modified), format_size(o.size), o.key) for o in objects
    )
    out.table(rows)


@main.command()
@click.argument("target")
@click.pass_context
def mb(ctx: Any, target: str) -> None:
    """Make a bucket (TARGET: alias/bucket)."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        scope = _remote_scope(ctx, target)
        _get_client(ctx, scope.alias).make_bucket(scope.bucket)
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"created": scope.bucket})
    else:
        out.success(f"created: {scope.bucket}")


@main.command()
@click.argument("target")
@click.pass_context
def rb(ctx: Any, target: str) -> None:
    """Remove an empty bucket (TARGET: alias/bucket)."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        scope = _remote_scope(ctx, target)
        _get_client(ctx, scope.alias).remove_bucket(scope.bucket)
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"deleted": scope.bucket})
    else:
        out.success(f"deleted: {scope.bucket}")


@main.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.argument("target")
@click.pass_context
def put(ctx: Any, source: str, target: str) -> None:
    """Upload a file to alias/bucket/key.

    A TARGET ending in '/' (or naming only a bucket) keeps the file name.
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        _remote_scope(ctx, target)
        result = _copy(ctx, source, target)
    except KeyboardInterrupt:
        out.warning("Upload cancelled by user")
        ctx.exit(130)
        return
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"uploaded": result})
    else:
        out.success(f"Uploaded '{source}' to '{result['target']}'")


@main.command()
@click.argument("source")
@click.argument("target", type=click.Path(dir_okay=True))
@click.pass_context
def get(ctx: Any, source: str, target: str) -> None:
    """Download alias/bucket/key to a local file or directory."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        _remote_scope(ctx, source)
        result = _copy(ctx, source, target)
    except KeyboardInterrupt:
        out.warning("Download cancelled by user")
        ctx.exit(130)
        return
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"downloaded": result})
    else:
        out.success(f"Downloaded '{result['source']}' to '{result['target']}'")


def _copy_command(ctx: Any, source: str, target: str, move: bool) -> None:
    out: OutputFormatter = ctx.obj["out"]
    command = "mv" if move else "cp"
    try:
        result = _copy(ctx, source, target, move=move)
    except KeyboardInterrupt:
        out.warning(f"{command} cancelled by user")
        ctx.exit(130)
        return
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"status": "ok", "command": command, **result})
    else:
        out.success(f"{command}: {source} -> {target}")


@main.command()
@click.argument("source")
@click.argument("target")
@click.pass_context
def cp(ctx: Any, source: str, target: str) -> None:
    """Copy one object between local paths and alias/bucket/key targets."""
    _copy_command(ctx, source, target, move=False)


@main.command()
@click.argument("source")
@click.argument("target")
@click.pass_context
def mv(ctx: Any, source: str, target: str) -> None:
    """Move one object (copy, then delete the source)."""
    _copy_command(ctx, source, target, move=True)


@main.command()
@click.argument("target")
@click.option(
    "--recursive", "-r", is_flag=True, help="Remove every object under the prefix"
)
@click.pass_context
def rm(ctx: Any, target: str, recursive: bool) -> None:
    """Remove an object (or a whole prefix with --recursive)."""
    out: OutputFormatter = ctx.obj["out"]
    retry: RetryPolicy = ctx.obj["retry"]
    deleted: list[str] = []
    try:
        scope = _remote_scope(ctx, target)
        client = _get_client(ctx, scope.alias)
        if recursive:
            store = RemoteStore(client, scope, stored_mtimes=False)
            for entry in ObjectLister(retry=retry).list(store):
                retry.call(lambda: store.delete(entry.key), f"delete {entry.key}")
                deleted.append(join_key(scope.prefix, entry.key))
                logger.debug(f"Deleted {scope.bucket}/{deleted[-1]}")
        else:
            if not scope.prefix:
                raise S4ConfigError(f"Target {target} must include a key")
            retry.call(
                lambda: client.delete_object(scope.bucket, scope.prefix), f"delete {target}"
            )
            deleted.append(scope.prefix)
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"deleted": {"bucket": scope.bucket, "keys": deleted}})
    else:
        for key in deleted:
            out.info(f"Deleted '{scope.bucket}/{key}'")


@main.command()
@click.argument("target")
@click.pass_context
def stat(ctx: Any, target: str) -> None:
    """Show object metadata."""
    out: OutputFormatter = ctx.obj["out"]
    retry: RetryPolicy = ctx.obj["retry"]
    try:
        scope = _remote_scope(ctx, target)
        if not scope.prefix:
            raise S4ConfigError(f"Target {target} must include a key")
        client = _get_client(ctx, scope.alias)
        info = retry.call(lambda: client.head_object(scope.bucket, scope.prefix), f"stat {target}")
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(
            {
                "bucket": scope.bucket,
                "key": info.key,
                "size": info.size,
                "last_modified": info.last_modified,
                "etag": info.etag,
                "content_type": info.content_type,
            }
        )
        return
    out.print(f"Key:           {info.key}")
    out.print(f"Size:          {format_size(info.size)} ({info.size} bytes)")
    out.print(f"Last modified: {_format_time(info.last_modified)}")
    out.print(f"ETag:          {info.etag}")
    if info.content_type:
        out.print(f"Content-Type:  {info.content_type}")


@main.command()
@click.argument("target")
@click.pass_context
def cat(ctx: Any, target: str) -> None:
    """Write an object's content to stdout."""
    out: OutputFormatter = ctx.obj["out"]
    stream = click.get_binary_stream("stdout")
    try:
        scope = _remote_scope(ctx, target)
        if not scope.prefix:
            raise S4ConfigError(f"Target {target} must include a key")
        client = _get_client(ctx, scope.alias)
        for chunk in client.iter_object(scope.bucket, scope.prefix):
            stream.write(chunk)
        stream.flush()
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)


# =============================================================================
# Sync
# =============================================================================


@main.command()
@click.argument("source")
@click.argument("destination")
@click.option("--dry-run", is_flag=True, help="Show the plan without transferring")
@click.option(
    "--remove", is_flag=True, help="Delete destination objects missing from source"
)
@click.option("--watch", "-w", is_flag=True, help="Repeat the sync until interrupted")
@click.option(
    "--exclude",
    multiple=True,
    metavar="GLOB",
    help="Skip keys matching a shell pattern (repeatable)",
)
@click.option(
    "--older-than",
    metavar="DURATION",
    help="Only sync objects older than this (e.g. 7d, 1d12h)",
)
@click.option(
    "--newer-than",
    metavar="DURATION",
    help="Only sync objects newer than this (e.g. 30m, 365d)",
)
@click.option(
    "--overwrite",
    is_flag=True,
    help="Replace differing destination objects (always on; kept for compatibility)",
)
@click.option(
    "--workers",
    type=int,
    default=DEFAULT_WORKERS,
    show_default=True,
    help="Number of parallel transfers",
)
@click.option(
    "--part-workers",
    type=int,
    default=DEFAULT_PART_WORKERS,
    show_default=True,
    help="Parallel parts per multipart upload",
)
@click.option(
    "--part-size",
    type=int,
    default=None,
    help="Multipart part size in MiB (default: 8, minimum: 5)",
)
@click.pass_context
def sync(
    ctx: Any,
    source: str,
    destination: str,
    dry_run: bool,
    remove: bool,
    watch: bool,
    exclude: tuple[str, ...],
    older_than: Optional[str],
    newer_than: Optional[str],
    overwrite: bool,
    workers: int,
    part_workers: int,
    part_size: Optional[int],
) -> None:
    """Make DESTINATION match SOURCE.

    SOURCE and DESTINATION are local directories or alias/bucket[/prefix]
    targets. Only new and changed objects are transferred. Objects larger
    than 16 MiB are uploaded in parts.

    Examples:
        s4 sync ./photos minio/backup/photos
        s4 sync minio/data ./data --remove --exclude '*.tmp'
        s4 mirror ./logs minio/logs --older-than 1d --watch
    """
    out: OutputFormatter = ctx.obj["out"]
    cfg = _get_config(ctx)

    try:
        options = SyncOptions.from_cli(
            exclude=exclude,
            older_than=older_than,
            newer_than=newer_than,
            part_size_mib=part_size,
            remove=remove,
            dry_run=dry_run,
            overwrite=overwrite,
            watch=watch,
            watch_interval=cfg.watch_interval if watch else DEFAULT_WATCH_INTERVAL,
            workers=workers,
            part_workers=part_workers,
            retry=ctx.obj["retry"],
        )
        pair = SyncPair.parse(source, destination, cfg.load_aliases())
        # Resolve aliases now so an unknown alias fails before listing
        for scope in (pair.source, pair.destination):
            if not scope.is_local:
                _get_client(ctx, scope.alias)
    except S4ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    engine = SyncEngine(lambda name: _get_client(ctx, name), out)

    if watch:
        context = WatchContext.create(pair, options)

        def on_cycle(result) -> None:
            if result.error is not None and not out.json_output:
                out.error(str(result.error))
            out.info(
                f"Waiting {context.interval:g}s for the next cycle (Ctrl+C to stop)"
            )

        loop = WatchLoop(engine, context, on_cycle=on_cycle)
        with cancel_on_signals(context.token):
            latest = loop.run()

        out.info(f"Watch stopped after {loop.cycles} cycle(s)")
        if out.json_output:
            out.output_json(
                {
                    "cycles": loop.cycles,
                    "report": latest.report.to_dict() if latest and latest.report else None,
                    "error": str(latest.error) if latest and latest.error else None,
                }
            )
        if latest is not None and not latest.ok:
            ctx.exit(1)
        return

    try:
        report = engine.sync_pair(pair, options)
    except KeyboardInterrupt:
        out.warning("Sync cancelled by user")
        ctx.exit(130)
        return
    except S4Error as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(report.to_dict())
    if not report.ok:
        ctx.exit(1)


main.add_command(sync, name="mirror")


@main.command()
@click.pass_context
def version(ctx: Any) -> None:
    """Print the version."""
    out: OutputFormatter = ctx.obj["out"]
    current = metadata.version("pys4")
    if out.json_output:
        out.output_json({"version": current})
    else:
        click.echo(f"s4 {current}")


if __name__ == "__main__":
    main()
