"""CLI entry point for SpendLens.

Commands:
    spendlens ingest FILE --user U               Import one extraction JSON file
    spendlens retry FILE_ID --user U             Re-run a failed import
    spendlens watch [--user U]                   Start the drop-folder watcher
    spendlens link-transfers --user U            Pair transfers across all history
    spendlens resolve-categories --user U IDS    Re-run category resolution
    spendlens resolve-vendors --user U IDS       Re-run vendor resolution
    spendlens correct-vendor --user U TXN NAME   Record a vendor correction
    spendlens correct-category --user U TXN CAT  Record a category correction
    spendlens mappings {list,add,update,delete}  Manage personal vendor mappings
    spendlens cleanup-mappings                   Drop stale low-confidence mappings
    spendlens categories {list,add,delete}       Manage the category tree

Results are printed as JSON. Exit code 1 means the request itself was
rejected (validation, not found, conflict); partial batch failures are
reported in the output and still exit 0.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from dataclasses import asdict
from pathlib import Path

logger = logging.getLogger(__name__)

CLAUDE_MODEL = "claude-sonnet-4-20250514"


def _setup_logging() -> None:
    """Configure logging based on SPENDLENS_LOG_LEVEL env var."""
    level = os.environ.get("SPENDLENS_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _get_config():
    from spendlens.config import Config

    return Config(config_dir=os.environ.get("SPENDLENS_CONFIG_DIR", "config"))


def _get_migrations_dir() -> Path:
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("SPENDLENS_MIGRATIONS_DIR", default))


def _get_repo():
    """Open the configured database with all migrations applied."""
    from spendlens.database.repository import Repository

    repo = Repository(db_path=os.environ.get("SPENDLENS_DB_PATH", "spendlens.db"))
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_watch_dir() -> Path:
    return Path(os.environ.get("SPENDLENS_WATCH_DIR", "inbox"))


def _make_claude_fn():
    """Create a Claude API callback for vendor and category suggestions.

    Returns a callable (system: str, prompt: str) -> str, or None if
    ANTHROPIC_API_KEY is not set.
    """
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None

    import anthropic

    client = anthropic.Anthropic(api_key=api_key)

    def claude_fn(system: str, prompt: str) -> str:
        response = client.messages.create(
            model=CLAUDE_MODEL,
            max_tokens=1024,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    return claude_fn


def _build_resolver(config, repo):
    """Wire the caches, dictionary, rules and resolvers into a BulkResolver."""
    from spendlens.categorize.category_cache import CategoryMappingCache
    from spendlens.categorize.category_resolver import CategoryResolver
    from spendlens.categorize.pattern_rules import rules_from_config
    from spendlens.categorize.pipeline import BulkResolver, Pacer
    from spendlens.categorize.vendor_cache import ConsensusRule, VendorMappingCache
    from spendlens.categorize.vendor_dictionary import VendorDictionary
    from spendlens.categorize.vendor_resolver import VendorResolver

    claude_fn = _make_claude_fn()
    consensus = ConsensusRule(**config.consensus)
    cache_kwargs = dict(
        consensus=consensus,
        high_confidence=config.threshold("high_confidence_global"),
        update_delta=config.threshold("cache_update_delta"),
        cleanup_floor=config.threshold("cleanup_confidence_floor"),
        cleanup_max_age_days=config.cleanup_max_age_days,
    )
    dictionary = VendorDictionary.from_config(config)
    vendor_resolver = VendorResolver(
        VendorMappingCache(repo, **cache_kwargs), dictionary, claude_fn=claude_fn,
    )
    category_resolver = CategoryResolver(
        repo,
        CategoryMappingCache(repo, **cache_kwargs),
        dictionary,
        config.category_hints,
        rules_from_config(config),
        claude_fn=claude_fn,
        auto_apply_threshold=config.threshold("auto_apply"),
    )
    limits = config.bulk_limits
    return BulkResolver(
        repo, vendor_resolver, category_resolver,
        pacer=Pacer(config.pacing_delay),
        max_category_ids=limits["categories"],
        max_vendor_ids=limits["vendors"],
    )


def _build_pipeline(config, repo):
    from spendlens.watcher.observer import ImportPipeline

    return ImportPipeline(
        repo,
        _build_resolver(config, repo),
        transfer_keywords=config.transfer_keywords,
        transfer_window_days=config.transfer_window_days,
        transfer_tolerance=config.transfer_amount_tolerance,
        insert_batch_size=config.insert_batch_size,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _request_errors() -> tuple[type[Exception], ...]:
    from spendlens.categorize.categories import CategoryError
    from spendlens.categorize.vendor_cache import MappingConflictError, ValidationError
    from spendlens.database.repository import NotFoundError
    from spendlens.watcher.observer import RetryError

    return (ValidationError, NotFoundError, MappingConflictError, CategoryError, RetryError)


# ── Command handlers ─────────────────────────────────────


def cmd_ingest(args: argparse.Namespace) -> int:
    """Import one extraction JSON file for a user."""
    filepath = Path(args.file).resolve()
    if not filepath.exists():
        return _fail(f"File not found: {filepath}")

    config = _get_config()
    repo = _get_repo()
    try:
        result = _build_pipeline(config, repo).process_file(filepath, args.user)
        _print_json(result.to_dict())
        return 1 if result.status == "failed" else 0
    finally:
        repo.close()


def cmd_retry(args: argparse.Namespace) -> int:
    """Re-run a failed import from its stored records."""
    config = _get_config()
    repo = _get_repo()
    try:
        result = _build_pipeline(config, repo).retry_file(args.file_id, args.user)
        _print_json(result.to_dict())
        return 1 if result.status == "failed" else 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_watch(args: argparse.Namespace) -> int:
    """Start the file watcher daemon."""
    from spendlens.watcher.observer import FileWatcher

    config = _get_config()
    repo = _get_repo()
    watcher = FileWatcher(
        watch_dir=_get_watch_dir(),
        pipeline=_build_pipeline(config, repo),
        user_id=args.user,
    )

    print(f"Watching {watcher.watch_dir} for extraction files... (Ctrl+C to stop)")
    watcher.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping watcher...")
    finally:
        watcher.stop()
        repo.close()
    return 0


def cmd_link_transfers(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        linked = _build_pipeline(config, repo).relink_transfers(args.user)
        _print_json({"linked": linked})
        return 0
    finally:
        repo.close()


def cmd_resolve_categories(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        result = _build_resolver(config, repo).resolve_categories(
            args.user, args.ids, auto_apply=args.auto_apply,
        )
        _print_json(result.to_dict())
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_resolve_vendors(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        result = _build_resolver(config, repo).resolve_vendors(
            args.user, args.ids, auto_apply=args.auto_apply,
        )
        _print_json(result.to_dict())
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_correct_vendor(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        txn = _build_resolver(config, repo).correct_vendor(args.user, args.txn_id, args.name)
        _print_json(asdict(txn))
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_correct_category(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        txn = _build_resolver(config, repo).correct_category(
            args.user, args.txn_id, args.category_id,
        )
        _print_json(asdict(txn))
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_mappings(args: argparse.Namespace) -> int:
    """Personal vendor mapping management."""
    sub = args.mappings_command
    if sub is None:
        print("Usage: spendlens mappings {list,add,update,delete}")
        return 1

    config = _get_config()
    repo = _get_repo()
    cache = _build_resolver(config, repo).vendor_resolver.cache
    try:
        if sub == "list":
            mappings = cache.list_mappings(args.user, include_global=args.include_global)
            _print_json([asdict(m) for m in mappings])
        elif sub == "add":
            mapping = cache.create_mapping(
                args.user, args.original_text, args.mapped_name, args.confidence,
            )
            _print_json(asdict(mapping))
        elif sub == "update":
            mapping = cache.update_mapping(
                args.user, args.mapping_id,
                mapped_name=args.name, confidence=args.confidence,
            )
            _print_json(asdict(mapping))
        elif sub == "delete":
            cache.delete_mapping(args.user, args.mapping_id)
            _print_json({"deleted": args.mapping_id})
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


def cmd_cleanup_mappings(args: argparse.Namespace) -> int:
    config = _get_config()
    repo = _get_repo()
    try:
        resolver = _build_resolver(config, repo)
        _print_json({
            "vendor_mappings_deleted": resolver.vendor_resolver.cache.cleanup_mappings(),
            "category_mappings_deleted": resolver.category_resolver.cache.cleanup_mappings(),
        })
        return 0
    finally:
        repo.close()


def cmd_categories(args: argparse.Namespace) -> int:
    """Category tree management."""
    from spendlens.categorize.categories import CategoryTree

    sub = args.categories_command
    if sub is None:
        print("Usage: spendlens categories {list,add,delete}")
        return 1

    repo = _get_repo()
    tree = CategoryTree(repo)
    try:
        if sub == "list":
            _print_json([asdict(c) for c in tree.list(args.user)])
        elif sub == "add":
            cat = tree.create(args.user, args.name, parent_id=args.parent,
                              description=args.description)
            _print_json(asdict(cat))
        elif sub == "delete":
            tree.delete(args.user, args.category_id)
            _print_json({"deleted": args.category_id})
        return 0
    except _request_errors() as e:
        return _fail(str(e))
    finally:
        repo.close()


# ── Entry point ──────────────────────────────────────────


_COMMANDS = {
    "ingest": cmd_ingest,
    "retry": cmd_retry,
    "watch": cmd_watch,
    "link-transfers": cmd_link_transfers,
    "resolve-categories": cmd_resolve_categories,
    "resolve-vendors": cmd_resolve_vendors,
    "correct-vendor": cmd_correct_vendor,
    "correct-category": cmd_correct_category,
    "mappings": cmd_mappings,
    "cleanup-mappings": cmd_cleanup_mappings,
    "categories": cmd_categories,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spendlens",
        description="SpendLens statement ingestion and categorization",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ingest
    ingest_p = subparsers.add_parser("ingest", help="Import an extraction JSON file")
    ingest_p.add_argument("file", type=Path, help="Extraction output file")
    ingest_p.add_argument("--user", required=True, help="Owning user id")

    # retry
    retry_p = subparsers.add_parser("retry", help="Re-run a failed import")
    retry_p.add_argument("file_id", help="Id of the failed file")
    retry_p.add_argument("--user", required=True, help="Owning user id")

    # watch
    watch_p = subparsers.add_parser("watch", help="Start file watcher daemon")
    watch_p.add_argument("--user", help="Treat the watch folder as this user's inbox")

    # link-transfers
    link_p = subparsers.add_parser("link-transfers", help="Pair transfers across all history")
    link_p.add_argument("--user", required=True)

    # resolve-categories / resolve-vendors
    for name, help_text in (
        ("resolve-categories", "Resolve categories for transactions"),
        ("resolve-vendors", "Resolve vendor names for transactions"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--user", required=True)
        p.add_argument("ids", nargs="+", help="Transaction ids")
        p.add_argument("--auto-apply", action="store_true",
                       help="Write high-confidence results to the transactions")

    # correct-vendor
    cv_p = subparsers.add_parser("correct-vendor", help="Correct a transaction's vendor")
    cv_p.add_argument("--user", required=True)
    cv_p.add_argument("txn_id")
    cv_p.add_argument("name", help="Correct vendor name")

    # correct-category
    cc_p = subparsers.add_parser("correct-category", help="Correct a transaction's category")
    cc_p.add_argument("--user", required=True)
    cc_p.add_argument("txn_id")
    cc_p.add_argument("category_id")

    # mappings
    map_p = subparsers.add_parser("mappings", help="Manage personal vendor mappings")
    map_sub = map_p.add_subparsers(dest="mappings_command")
    map_list_p = map_sub.add_parser("list", help="List mappings")
    map_list_p.add_argument("--user", required=True)
    map_list_p.add_argument("--include-global", action="store_true")
    map_add_p = map_sub.add_parser("add", help="Add a mapping")
    map_add_p.add_argument("--user", required=True)
    map_add_p.add_argument("original_text")
    map_add_p.add_argument("mapped_name")
    map_add_p.add_argument("--confidence", type=float, default=0.95)
    map_upd_p = map_sub.add_parser("update", help="Update a mapping")
    map_upd_p.add_argument("--user", required=True)
    map_upd_p.add_argument("mapping_id")
    map_upd_p.add_argument("--name")
    map_upd_p.add_argument("--confidence", type=float)
    map_del_p = map_sub.add_parser("delete", help="Delete a mapping")
    map_del_p.add_argument("--user", required=True)
    map_del_p.add_argument("mapping_id")

    # cleanup-mappings
    subparsers.add_parser("cleanup-mappings", help="Delete stale low-confidence mappings")

    # categories
    cat_p = subparsers.add_parser("categories", help="Manage the category tree")
    cat_sub = cat_p.add_subparsers(dest="categories_command")
    cat_list_p = cat_sub.add_parser("list", help="List visible categories")
    cat_list_p.add_argument("--user")
    cat_add_p = cat_sub.add_parser("add", help="Add a personal category")
    cat_add_p.add_argument("--user", required=True)
    cat_add_p.add_argument("name")
    cat_add_p.add_argument("--parent", help="Parent category id")
    cat_add_p.add_argument("--description")
    cat_del_p = cat_sub.add_parser("delete", help="Delete a personal category")
    cat_del_p.add_argument("--user", required=True)
    cat_del_p.add_argument("category_id")

    return parser


def main(argv: list[str] | None = None):
    _setup_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
