"""
Command-line entry point for reviewhub.

Commands:
- check: verify configuration, cache and database connectivity
- warm-shop: preload a shop with logical expiry
- simulate-seckill: run a concurrent flash sale against a fresh voucher
"""

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from .app import ReviewHubApp
from .cache.config import ValkeyError
from .models.enums import SeckillStatus
from .models.voucher import SeckillVoucherModel
from .services.voucher_order_service import OrderQueueFullError
from .utils.config import get_config

app = typer.Typer(help="reviewhub cache and flash-sale backend")
console = Console()
logger = logging.getLogger(__name__)


def _build_app(log_level: str = None) -> ReviewHubApp:
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, (log_level or config.log_level).upper()),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    return ReviewHubApp(config=config)


def _fail(message: str) -> None:
    console.print(f"[red]❌ {message}[/red]")
    raise typer.Exit(code=1)


@app.command()
def check(
    log_level: str = typer.Option(None, "--log-level", "-l", help="Override LOG_LEVEL"),
):
    """Check configuration, cache and database connectivity"""
    hub = _build_app(log_level)
    try:
        hub.start()
        cache_health = hub.cache_manager.health_check()
        db_ok = hub.db_config.test_connection()
    except (ValkeyError, SQLAlchemyError) as e:
        _fail(f"Startup failed: {e}")
    finally:
        hub.close()

    table = Table(title="reviewhub health", box=box.ROUNDED, show_header=False)
    table.add_column("Component", style="cyan")
    table.add_column("Status")

    connection_info = cache_health.get("connection_info", {})
    table.add_row("Valkey", "[green]healthy[/green]" if cache_health["cache_available"] else "[red]unhealthy[/red]")
    table.add_row("Valkey server", str(connection_info.get("server_version", "unknown")))
    table.add_row("Valkey config", str(connection_info.get("config", "")))
    table.add_row("Database", "[green]healthy[/green]" if db_ok else "[red]unhealthy[/red]")
    table.add_row("Database URL", str(hub.db_config.get_connection_info()["database_url"]))
    console.print(table)

    if not (cache_health["cache_available"] and db_ok):
        raise typer.Exit(code=1)


@app.command("warm-shop")
def warm_shop(
    shop_id: int = typer.Argument(..., help="Shop to preload"),
    expire_seconds: int = typer.Option(
        20,
        "--expire-seconds",
        "-e",
        help="Seconds until the cached entry is logically stale"
    ),
):
    """Preload a shop into the cache with logical expiry"""
    hub = _build_app()
    try:
        hub.start()
        shop = hub.shops.warm_up(shop_id, expire_seconds)
    except (ValkeyError, SQLAlchemyError) as e:
        _fail(f"Warm-up failed: {e}")
    finally:
        hub.close()

    if shop is None:
        _fail(f"Shop {shop_id} does not exist")

    console.print(Panel(
        f"[bold]{shop.name}[/bold]\n{shop.address}\nexpires in {expire_seconds}s",
        title=f"Warmed shop {shop_id}",
        box=box.ROUNDED,
    ))


@app.command("simulate-seckill")
def simulate_seckill(
    stock: int = typer.Option(
        100,
        "--stock",
        "-s",
        help="Units available in the sale (1-100000)"
    ),
    users: int = typer.Option(
        1000,
        "--users",
        "-u",
        help="Number of distinct users buying concurrently (1-100000)"
    ),
    threads: int = typer.Option(
        32,
        "--threads",
        "-t",
        help="Request threads (1-256)"
    ),
    duplicates: int = typer.Option(
        0,
        "--duplicates",
        "-d",
        help="Extra repeated requests from already-seen users"
    ),
):
    """Register a voucher and fire concurrent flash-sale requests at it"""
    if not 1 <= stock <= 100000:
        _fail(f"Stock must be between 1 and 100000. Got: {stock}")
    if not 1 <= users <= 100000:
        _fail(f"Users must be between 1 and 100000. Got: {users}")
    if not 1 <= threads <= 256:
        _fail(f"Threads must be between 1 and 256. Got: {threads}")

    hub = _build_app()
    try:
        hub.start()
        now = datetime.now()
        voucher = SeckillVoucherModel(
            voucher_id=hub.id_worker.next_id("voucher"),
            stock=stock,
            begin_time=now - timedelta(minutes=1),
            end_time=now + timedelta(hours=1),
        )
        hub.voucher_orders.register_seckill_voucher(voucher)

        requests = list(range(1, users + 1)) + [1 + i % users for i in range(duplicates)]
        outcomes: Counter = Counter()
        order_ids = set()
        failures = 0
        start_time = time.time()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(f"Sending {len(requests)} requests", total=len(requests))
            with ThreadPoolExecutor(max_workers=threads) as executor:
                futures = [
                    executor.submit(hub.voucher_orders.seckill_voucher, voucher.voucher_id, user_id)
                    for user_id in requests
                ]
                for future in as_completed(futures):
                    try:
                        result = future.result()
                        outcomes[result.status] += 1
                        if result.order_id is not None:
                            order_ids.add(result.order_id)
                    except (ValkeyError, OrderQueueFullError) as e:
                        failures += 1
                        logger.warning(f"Request failed: {e}")
                    progress.update(task, advance=1)

        admission_time = time.time() - start_time
        hub.voucher_orders.wait_until_drained()
        persisted = len(hub.voucher_orders.order_repository.list_by_voucher(voucher.voucher_id))
        remaining = hub.voucher_orders.voucher_repository.get_by_id(voucher.voucher_id).stock
    except (ValkeyError, SQLAlchemyError) as e:
        _fail(f"Simulation failed: {e}")
    finally:
        hub.close()

    table = Table(title=f"Flash sale for voucher {voucher.voucher_id}", box=box.ROUNDED, show_lines=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for status in SeckillStatus:
        if outcomes[status]:
            table.add_row(status.message, str(outcomes[status]))
    table.add_row("Request errors", str(failures))
    table.add_row("Distinct order ids", str(len(order_ids)))
    table.add_row("Orders persisted", str(persisted))
    table.add_row("Store stock remaining", str(remaining))
    table.add_row("Admission time", f"{admission_time:.2f}s")
    console.print(table)

    if len(order_ids) != min(stock, users) or persisted != len(order_ids):
        console.print("[yellow]⚠️  Admitted and persisted order counts differ[/yellow]")


if __name__ == "__main__":
    app()
