#!/usr/bin/env python3
"""
Remote inventory → local store synchronizer

Features:
- Bearer session against the remote billing/inventory system, re-authenticating on expiry
- Endpoint/method probing over a config-driven candidate list (invsync.config.json)
- Field normalization of inconsistent remote records
- Idempotent upsert of products and serialized items, derived warehouse stock
- Remote item-history import with de-duplication
- SQLite run ledger for status/history queries

Usage:
  export $(grep -v '^#' .env | xargs)  # or rely on python-dotenv
  python invsync.py verify
  python invsync.py sync
  python invsync.py status
  python invsync.py history --limit 5
  python invsync.py inventory --raw
"""

import json
import logging

import click
import structlog

from invsync_auth import default_session_cache
from invsync_config import ConfigModel, default_config, load_config
from invsync_db import InventoryStore, RunLedger
from invsync_engine import build_engine, build_session, item_history, sync_status
from invsync_reconcile import recalculate_stock
from invsync_settings import get_settings, missing_required_keys, require_settings

# Configure structured logging
logging.basicConfig(level=logging.INFO, format="%(message)s", handlers=[logging.StreamHandler()])
logger = structlog.get_logger()


# Simple console for output
def print_msg(msg):
    print(msg)


def print_error(msg):
    print(f"ERROR: {msg}")


def print_success(msg):
    print(f"SUCCESS: {msg}")


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


# ---------- CLI helpers ----------
def ensure_env():
    """Validate required environment variables"""
    missing = missing_required_keys()
    if missing:
        print_error(f"Missing environment variables: {', '.join(missing)}")
        print_msg("Copy env.example to .env and fill in the values")
        raise click.ClickException("Missing required environment variables")
    # Type validation via Pydantic
    try:
        _ = require_settings()
    except Exception as e:
        print_error(f"Invalid environment configuration: {e}")
        raise click.ClickException("Invalid environment configuration") from e


def get_config() -> ConfigModel:
    path = get_settings().CONFIG_PATH
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("Config file not found, using built-in endpoints", path=path)
        return default_config()


def _set_verbose(verbose: bool) -> None:
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@click.group()
def cli():
    """Remote inventory → local store synchronizer"""
    pass


@cli.command()
def verify():
    """Check env, config, and authenticate against the remote system."""
    print_msg("Verifying setup...")

    try:
        ensure_env()
        print_success("Environment variables OK")
    except click.ClickException:
        return

    try:
        cfg = get_config()
        print_success(f"Configuration OK ({len(cfg.inventory_endpoints)} inventory endpoints)")
    except Exception as e:
        print_error(f"Configuration error: {e}")
        return

    try:
        build_session(require_settings(), cfg).get_auth_header()
        print_success("Remote authentication OK")
    except Exception as e:
        print_error(f"Remote auth failed: {e}")
        return

    print_success("All checks passed! Ready to sync.")


@cli.command()
@click.option("--verbose", is_flag=True, help="verbose logging")
def sync(verbose):
    """Pull inventory and history from the remote system into the local store."""
    _set_verbose(verbose)
    print_msg("Starting sync")

    try:
        ensure_env()
        engine = build_engine(require_settings(), get_config(), cache=default_session_cache())
    except Exception as e:
        print_error(f"Setup error: {e}")
        raise SystemExit(1) from e

    result = engine.run_sync()

    # Summary
    print_msg("\nSync Summary:")
    print_msg(f"  Created: {result.created}")
    print_msg(f"  Updated: {result.updated}")
    print_msg(f"  Errors: {result.errors}")

    if result.success:
        print_success(result.message)
    else:
        print_error(result.message)
        raise SystemExit(1)


@cli.command()
def status():
    """Show the outcome of the most recent sync run."""
    s = get_settings()
    st = sync_status(RunLedger(s.DB_PATH), default_session_cache().token is not None, s.API_BASE)
    print_json(st.model_dump(mode="json"))


@cli.command()
@click.option("--limit", type=int, default=10, show_default=True, help="number of runs to show")
def history(limit):
    """List recent sync runs, most recent first."""
    runs = RunLedger(get_settings().DB_PATH).list_runs(limit)
    if not runs:
        print_msg("No sync runs recorded")
        return
    print_json([r.model_dump(mode="json") for r in runs])


@cli.command()
@click.option("--raw", is_flag=True, help="print the remote payload instead of normalized items")
@click.option("--verbose", is_flag=True, help="verbose logging")
def inventory(raw, verbose):
    """Fetch remote inventory without writing anything locally."""
    _set_verbose(verbose)
    try:
        ensure_env()
        engine = build_engine(require_settings(), get_config(), cache=default_session_cache())
        payload, items = engine.preview_inventory()
    except click.ClickException:
        raise
    except Exception as e:
        print_error(f"Failed to fetch remote inventory: {e}")
        raise SystemExit(1) from e

    if raw:
        print_json(payload)
    else:
        print_json([it.model_dump(mode="json") for it in items])
    print_msg(f"{len(items)} items")


@cli.command("item-history")
@click.argument("remote_item_id")
def item_history_cmd(remote_item_id):
    """Show the remote history of a single remote item id."""
    try:
        ensure_env()
        events = item_history(require_settings(), get_config(), remote_item_id)
    except click.ClickException:
        raise
    except Exception as e:
        print_error(f"Failed to fetch history for {remote_item_id}: {e}")
        raise SystemExit(1) from e
    print_json(events)


@cli.command("recalc-stock")
def recalc_stock():
    """Recompute warehouse stock from current item statuses."""
    s = get_settings()
    quantities = recalculate_stock(InventoryStore(s.DB_PATH), s.WAREHOUSE_ID)
    print_success(f"Stock recalculated for {len(quantities)} products")


if __name__ == "__main__":
    cli()
