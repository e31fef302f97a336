"""CLI entry point for importstore.

Commands:
    importstore create-job FILE --user ID [--key KEY] [--apply-rules]
                                    Queue a JSON array of importer records
    importstore store KEY           Dedup, commit, tag (and apply rules)
    importstore status KEY          Show job status and error messages
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on IMPORTSTORE_LOG_LEVEL env var."""
    level = os.environ.get("IMPORTSTORE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load config from IMPORTSTORE_CONFIG_DIR, or None if it does not exist."""
    from importstore.config import Config

    config_dir = Path(os.environ.get("IMPORTSTORE_CONFIG_DIR", "config"))
    if not config_dir.is_dir():
        return None
    return Config(config_dir=config_dir)


def _get_repo():
    """Create a Repository connected to the configured database, schema applied."""
    from importstore.database.repository import Repository

    db_path = os.environ.get("IMPORTSTORE_DB_PATH", "importstore.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations()
    return repo


def _get_storage(repo, config):
    from importstore.storage.pipeline import ImportStorage
    from importstore.storage.rules import RuleProcessor

    options = {}
    if config is not None:
        options = dict(
            hits_per_split=config.hits_per_split,
            tag_label=config.tag_label,
            tag_mode=config.tag_mode,
        )

    return ImportStorage(
        ledger=repo, fingerprints=repo, transfers=repo, tags=repo,
        rules=repo, jobs=repo, rule_engine=RuleProcessor(repo), **options,
    )


# ── Commands ─────────────────────────────────────────────


def cmd_create_job(args: argparse.Namespace) -> int:
    """Store an importer's JSON output as a new import job."""
    from importstore.database.models import ImportJob
    from importstore.records import record_from_dict

    filepath = args.file.resolve()
    if not filepath.exists():
        print(f"Error: File not found: {filepath}")
        return 1
    try:
        transactions = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in {filepath}: {e}")
        return 1
    if not isinstance(transactions, list):
        print("Error: Expected a JSON array of transactions.")
        return 1

    for i, data in enumerate(transactions):
        try:
            record_from_dict(data)
        except (ValueError, TypeError, AttributeError) as e:
            print(f"Error: Entry #{i} is invalid: {e}")
            return 1

    configuration = {"apply-rules": True} if args.apply_rules else {}
    job = ImportJob(user_id=args.user, configuration=configuration,
                    transactions=transactions)
    if args.key:
        job.key = args.key

    repo = _get_repo()
    try:
        repo.insert_job(job)
    finally:
        repo.close()
    print(f"Created import job {job.key} with {len(transactions)} transactions.")
    return 0


def cmd_store(args: argparse.Namespace) -> int:
    """Run the storage pipeline for an import job."""
    from importstore.config import BatchConfig
    from importstore.database.models import JOB_STATUS_ERROR
    from importstore.records import record_from_dict
    from importstore.storage.errors import ImportStorageError

    config = _get_config()
    repo = _get_repo()
    try:
        job = repo.get_job(args.key)
        if job is None:
            print(f"Error: Import job not found: {args.key}")
            return 1

        if config is not None:
            batch_config = config.batch_config(job.configuration)
        else:
            batch_config = BatchConfig.from_mapping(job.configuration)
        try:
            batch = [record_from_dict(t) for t in job.transactions]
        except ValueError as e:
            print(f"Error: Import job {job.key} has an invalid entry: {e}")
            return 1
        storage = _get_storage(repo, config)

        try:
            result = storage.store(job, batch, batch_config)
        except Exception as e:
            # Failed jobs end in the error status, whatever stage they reached
            logger.exception("Import job %s failed", job.key)
            if isinstance(e, ImportStorageError):
                message = str(e)
            else:
                message = f"Import job {job.key} failed: {type(e).__name__}: {e}"
            repo.add_job_error(job.key, message)
            repo.set_job_status(job.key, JOB_STATUS_ERROR)
            print(f"Error: {message}")
            return 1

        print(
            f"{job.key}: {job.status}"
            f" (stored={len(result)}, dup={len(result.duplicates)})"
        )
        if result.tag is not None:
            print(f"  Tagged as \"{result.tag.tag}\"")
        return 0
    finally:
        repo.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Display an import job's status and error messages."""
    repo = _get_repo()
    try:
        job = repo.get_job(args.key)
        if job is None:
            print(f"Error: Import job not found: {args.key}")
            return 1
        errors = repo.get_job_errors(job.key)

        print(f"Import job {job.key}")
        print("=" * 40)
        print(f"  Status:        {job.status}")
        print(f"  Transactions:  {len(job.transactions):,}")
        if job.tag_id is not None:
            print(f"  Tag:           #{job.tag_id}")
        if errors:
            print(f"\n  Errors ({len(errors)}):")
            for message in errors:
                print(f"    {message}")
        return 0
    finally:
        repo.close()


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "create-job": cmd_create_job,
    "store": cmd_store,
    "status": cmd_status,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="importstore",
        description="Deduplicate and store imported ledger transactions",
    )
    subparsers = parser.add_subparsers(dest="command")

    # create-job
    create_p = subparsers.add_parser("create-job", help="Queue importer output as a job")
    create_p.add_argument("file", type=Path, help="JSON array of importer records")
    create_p.add_argument("--user", type=int, required=True, help="Owning user ID")
    create_p.add_argument("--key", help="Job key (random if omitted)")
    create_p.add_argument("--apply-rules", action="store_true",
                          help="Apply store-journal rules after import")

    # store
    store_p = subparsers.add_parser("store", help="Store an import job's transactions")
    store_p.add_argument("key", help="Import job key")

    # status
    status_p = subparsers.add_parser("status", help="Show import job status")
    status_p.add_argument("key", help="Import job key")

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
