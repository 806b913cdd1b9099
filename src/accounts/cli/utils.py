"""Shared helpers for CLI commands."""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer
from rich.console import Console

from src.accounts.core.errors import IdentityError
from src.accounts.core.storage.record_store import RecordStore, get_record_store

T = TypeVar("T")

console = Console()


def get_store() -> RecordStore:
    """Record store used by CLI commands."""
    return get_record_store()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` to completion, turning service errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except IdentityError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1) from e
