"""Storefront CLI — browse the catalog, flip stock, watch live updates.

Usage:
    storefront products --category shoes --sort price-asc
    storefront product air-runner-1           # Product detail
    storefront new-arrivals
    storefront categories
    storefront set-stock <product-id> --out-of-stock
    storefront watch                          # Stream live product updates
    storefront health
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Iterable, Iterator, Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("STOREFRONT_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the storefront backend."""
    headers = {}
    admin_key = os.environ.get("STOREFRONT_ADMIN_API_KEY")
    if admin_key:
        headers["X-Admin-Key"] = admin_key
    return httpx.AsyncClient(base_url=_api_url(), timeout=timeout, headers=headers)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _price_range(product: dict) -> str:
    low, high = product["min_price"], product["max_price"]
    return f"{low:.2f}" if low == high else f"{low:.2f}–{high:.2f}"


def _product_rows(products: list[dict]) -> list[dict]:
    return [
        {
            **p,
            "price_range": _price_range(p),
            "stock": "in stock" if p["in_stock"] else "sold out",
        }
        for p in products
    ]


PRODUCT_COLUMNS = [
    ("Name", "name", 32),
    ("Slug", "slug", 28),
    ("Price", "price_range", 16),
    ("Stock", "stock", 9),
]


def parse_sse(lines: Iterable[str]) -> Iterator[dict]:
    """Turn SSE lines into decoded events.

    Multiple data lines in one frame are joined with newlines; comment
    lines (keep-alives) are skipped; frames that aren't JSON are skipped.
    """
    data: list[str] = []
    for line in lines:
        if line == "":
            if data:
                try:
                    yield json.loads("\n".join(data))
                except json.JSONDecodeError:
                    pass
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="storefront")
def main():
    """Storefront — browse the catalog and watch live product updates."""


# ---------------------------------------------------------------------------
# storefront products / product / new-arrivals / categories
# ---------------------------------------------------------------------------


@main.command()
@click.option("--category", "-c", help="Category slug")
@click.option("--collection", help="Collection slug")
@click.option(
    "--sort", "-s", default="newest",
    type=click.Choice(["newest", "price-asc", "price-desc", "name-asc", "name-desc"]),
)
@click.option("--page", "-p", default=1, help="Page number")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def products(category: Optional[str], collection: Optional[str], sort: str,
             page: int, as_json: bool):
    """List products with the storefront's filters and sort."""
    _run(_products_impl(category, collection, sort, page, as_json))


async def _products_impl(category: Optional[str], collection: Optional[str],
                         sort: str, page: int, as_json: bool):
    params: dict = {"sort": sort, "page": page}
    if category:
        params["category"] = category
    if collection:
        params["collection"] = collection

    async with _client() as c:
        r = await c.get("/api/v1/products", params=params)
        r.raise_for_status()
        data = r.json()

    if as_json:
        click.echo(_pretty_json(data))
        return

    if not data["products"]:
        click.echo("No products found.")
        return
    _print_table(_product_rows(data["products"]), PRODUCT_COLUMNS)
    click.echo(f"\nPage {data['page']} of {data['total_pages']} ({data['total']} products)")


@main.command()
@click.argument("slug")
def product(slug: str):
    """Show one product."""
    _run(_product_impl(slug))


async def _product_impl(slug: str):
    async with _client() as c:
        r = await c.get(f"/api/v1/products/{slug}")
        if r.status_code == 404:
            click.secho(f"Product '{slug}' not found", fg="red", err=True)
            sys.exit(1)
        r.raise_for_status()
        click.echo(_pretty_json(r.json()))


@main.command("new-arrivals")
def new_arrivals():
    """Latest in-stock products."""
    _run(_new_arrivals_impl())


async def _new_arrivals_impl():
    async with _client() as c:
        r = await c.get("/api/v1/products/new-arrivals")
        r.raise_for_status()
        _print_table(_product_rows(r.json()), PRODUCT_COLUMNS)


@main.command()
def categories():
    """Categories with product counts."""
    _run(_categories_impl())


async def _categories_impl():
    async with _client() as c:
        r = await c.get("/api/v1/categories")
        r.raise_for_status()
        _print_table(r.json(), [
            ("Name", "name", 24),
            ("Slug", "slug", 24),
            ("Products", "product_count", 8),
        ])


# ---------------------------------------------------------------------------
# storefront set-stock
# ---------------------------------------------------------------------------


@main.command("set-stock")
@click.argument("product_id")
@click.option("--in-stock/--out-of-stock", default=True, help="New stock state")
def set_stock(product_id: str, in_stock: bool):
    """Mark a product in or out of stock (broadcasts a live update)."""
    _run(_set_stock_impl(product_id, in_stock))


async def _set_stock_impl(product_id: str, in_stock: bool):
    async with _client() as c:
        r = await c.patch(
            f"/api/v1/admin/products/{product_id}", json={"in_stock": in_stock}
        )
        if r.status_code in (401, 404):
            click.secho(r.json().get("detail", r.text), fg="red", err=True)
            sys.exit(1)
        r.raise_for_status()
        p = r.json()
    state = click.style("in stock", fg="green") if p["in_stock"] else click.style(
        "sold out", fg="red"
    )
    click.echo(f"{p['name']} is now {state}")


# ---------------------------------------------------------------------------
# storefront watch
# ---------------------------------------------------------------------------


@main.command()
@click.option("--count", "-n", type=int, default=None,
              help="Stop after N events (handshake included)")
def watch(count: Optional[int]):
    """Stream live product updates until interrupted."""
    try:
        _run(_watch_impl(count))
    except KeyboardInterrupt:
        click.echo()


async def _watch_impl(count: Optional[int]):
    seen = 0
    async with _client(timeout=None) as c:
        async with c.stream("GET", "/api/v1/sse/product-updates") as r:
            r.raise_for_status()
            async for event in _aparse_sse(r.aiter_lines()):
                kind = event.get("type", "update")
                color = "cyan" if kind == "connection" else "yellow"
                click.secho(f"[{kind}] ", fg=color, nl=False)
                click.echo(json.dumps(event, default=str))
                seen += 1
                if count is not None and seen >= count:
                    return


async def _aparse_sse(lines):
    buffer: list[str] = []
    async for line in lines:
        buffer.append(line)
        if line == "":
            for event in parse_sse(buffer):
                yield event
            buffer = []


# ---------------------------------------------------------------------------
# storefront health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Backend and dependency status."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        r = await c.get("/api/v1/health")
        r.raise_for_status()
        data = r.json()
    color = "green" if data["status"] == "healthy" else "yellow"
    click.secho(data["status"], fg=color, bold=True)
    for key in ("postgres", "redis"):
        click.echo(f"  {key}: {data.get(key)}")
    click.echo(f"  open streams: {data.get('sse_subscribers', 0)}")


if __name__ == "__main__":
    main()
