"""CLI interface for statusctl."""

import click
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from .diagnostics import configure_logging
from .errors import StatusCtlError
from .hooks import DeferredQueue, HookRegistry
from .models import Order
from .settings import RuntimeSettings
from .storage import EventScheduler, InstanceRegistry, OrderStore, TransientStore
from .updater import AutoStatusUpdater
from .validation import parse_time_expression
from .worker import Poller


# Global runtime settings
_runtime: Optional[RuntimeSettings] = None


def get_runtime() -> RuntimeSettings:
    """Get or create runtime settings."""
    global _runtime
    if _runtime is None:
        _runtime = RuntimeSettings()
    return _runtime


class Environment:
    """Stores and shared hook state for one CLI invocation."""

    def __init__(self, runtime: RuntimeSettings):
        self.runtime = runtime
        self.orders = OrderStore(runtime.data_dir)
        self.transients = TransientStore(runtime.data_dir)
        self.timer = EventScheduler(runtime.data_dir)
        self.registry = InstanceRegistry(runtime.data_dir)
        self.hooks = HookRegistry()
        self.deferred = DeferredQueue()

    def build(self, slug: str, settings: Dict[str, Any]) -> AutoStatusUpdater:
        return AutoStatusUpdater(
            slug,
            settings,
            orders=self.orders,
            transients=self.transients,
            timer=self.timer,
            hooks=self.hooks,
            deferred=self.deferred,
            runtime=self.runtime,
        )

    def load(self, slug: str) -> AutoStatusUpdater:
        settings = self.registry.get(slug)
        if settings is None:
            click.echo(f"✗ Instance {slug} not found", err=True)
            sys.exit(1)
        return self.build(slug, settings)

    def load_all(self) -> List[AutoStatusUpdater]:
        updaters = []
        for slug, settings in self.registry.get_all().items():
            try:
                updaters.append(self.build(slug, settings))
            except StatusCtlError as e:
                click.echo(f"✗ Instance {slug} skipped: {e}", err=True)
        return updaters

    def save(self, updater: AutoStatusUpdater) -> None:
        self.registry.save(updater.slug, updater.settings.model_dump(mode="json"))


def _format_ts(ts: Optional[int]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _parse_value(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _parse_when(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    ts = parse_time_expression(value)
    if ts is None:
        raise click.BadParameter(f"Cannot parse time expression: {value}")
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@click.group()
@click.pass_context
def cli(ctx):
    """statusctl - Move aged orders to a new status on a schedule"""
    runtime = get_runtime()
    configure_logging(runtime.log_level)
    ctx.obj = Environment(runtime)
    # Batches queued while building instances (drain-on-boot) run when the command ends.
    ctx.call_on_close(ctx.obj.deferred.run_pending)


@cli.group()
def instance():
    """Manage updater instances"""
    pass


@instance.command("add")
@click.argument("slug")
@click.option("--days", type=int, help="Age threshold in days")
@click.option("--since", type=click.Choice(["modified", "created", "completed", "paid"]), help="Timestamp to measure age from")
@click.option("--target-status", "target_statuses", multiple=True, help="Status to move orders out of (repeatable)")
@click.option("--new-status", help="Status to move orders to")
@click.option("--limit", type=int, help="Orders per logical run (-1 for no limit)")
@click.option("--frequency", help="Schedule interval name, e.g. daily")
@click.option("--start", help="First run: timestamp or time expression")
@click.option("--hide-notices", is_flag=True, default=None, help="Hide diagnostic notices")
@click.option("--block-exceptions", is_flag=True, default=None, help="Invalidate instead of raising on bad settings")
@click.pass_obj
def add(env: Environment, slug: str, **options):
    """Add an updater instance and schedule it.

    Example:
        statusctl instance add stale-pending --days 90 --target-status pending --new-status cancelled
    """
    if env.registry.get(slug) is not None:
        click.echo(f"✗ Instance {slug} already exists", err=True)
        sys.exit(1)

    settings = {k: v for k, v in options.items() if v not in (None, ())}
    if "target_statuses" in settings:
        settings["target_statuses"] = list(settings["target_statuses"])
    if "start" in settings:
        settings["start"] = _parse_value(settings["start"])

    try:
        updater = env.build(slug, settings)
    except StatusCtlError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    if updater.invalidated:
        click.echo(f"✗ Instance {slug} has invalid settings", err=True)
        sys.exit(1)

    env.save(updater)
    click.echo(f"✓ Instance {slug} added, next run {_format_ts(updater.next_scheduled())}")


@instance.command("list")
@click.pass_obj
def list_instances(env: Environment):
    """List updater instances."""
    instances = env.registry.get_all()
    if not instances:
        click.echo("No instances found")
        return

    click.echo(f"\n{'Slug':<20} {'Days':<6} {'Since':<10} {'Targets':<24} {'New':<12} {'Limit':<6} {'Frequency':<10}")
    click.echo("-" * 92)
    for slug, s in instances.items():
        targets = ",".join(s.get("target_statuses", []))[:24]
        click.echo(
            f"{slug:<20} {s.get('days', ''):<6} {s.get('since', ''):<10} {targets:<24} "
            f"{s.get('new_status', ''):<12} {s.get('limit', ''):<6} {s.get('frequency', ''):<10}"
        )
    click.echo()


@instance.command("remove")
@click.argument("slug")
@click.pass_obj
def remove(env: Environment, slug: str):
    """Clear an instance's schedule and delete it."""
    updater = env.load(slug)
    updater.clear_events()
    env.registry.remove(slug)
    click.echo(f"✓ Instance {slug} removed")


@cli.group()
def config():
    """Manage instance settings"""
    pass


@config.command()
@click.argument("slug")
@click.pass_obj
def show(env: Environment, slug: str):
    """Show the settings of an instance.

    Example:
        statusctl config show stale-pending
    """
    updater = env.load(slug)
    if updater.invalidated:
        click.echo(f"✗ Instance {slug} is invalidated", err=True)
        sys.exit(1)

    click.echo(f"\nSettings for {slug} ({updater.event_hook}):")
    for key, value in updater.settings.model_dump(mode="json").items():
        if key == "start":
            value = f"{value} ({_format_ts(value)})"
        elif isinstance(value, list):
            value = ", ".join(value)
        click.echo(f"  {key.replace('_', '-'):<18} {value}")
    click.echo()


@config.command("set")
@click.argument("slug")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def set_setting(env: Environment, slug: str, key: str, value: str):
    """Set a setting of an instance.

    Example:
        statusctl config set stale-pending days 30
        statusctl config set stale-pending target-statuses '["pending", "on-hold"]'
    """
    updater = env.load(slug)
    name = key.replace("-", "_")

    try:
        accepted = updater.update(name, _parse_value(value))
    except StatusCtlError as e:
        click.echo(f"✗ Invalid value: {e}", err=True)
        sys.exit(1)

    if not accepted:
        click.echo(f"✗ Invalid value for {key}", err=True)
        sys.exit(1)

    env.save(updater)
    click.echo(f"✓ Configuration updated: {key} = {updater.get(name)}")


@cli.group()
def order():
    """Manage orders"""
    pass


@order.command("add")
@click.argument("order_id")
@click.option("--status", default="pending", help="Initial status")
@click.option("--created", help="Creation time (time expression)")
@click.option("--modified", help="Last modification time (time expression)")
@click.option("--completed", help="Completion time (time expression)")
@click.option("--paid", help="Payment time (time expression)")
@click.pass_obj
def add_order(env: Environment, order_id: str, status: str, created, modified, completed, paid):
    """Add an order.

    Example:
        statusctl order add 1001 --status pending --modified "91 days ago"
    """
    data: Dict[str, Any] = {"id": order_id, "status": status}
    for field, value in (("date_created", created), ("date_modified", modified),
                         ("date_completed", completed), ("date_paid", paid)):
        when = _parse_when(value)
        if when is not None:
            data[field] = when

    try:
        env.orders.add_order(Order(**data))
    except ValueError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Order {order_id} added")


@order.command("list")
@click.option("--status", help="Filter by status")
@click.option("--limit", default=20, help="Maximum orders to display")
@click.pass_obj
def list_orders(env: Environment, status: Optional[str], limit: int):
    """List orders, optionally by status."""
    orders = env.orders.get_orders_by_status(status) if status else env.orders.get_all_orders()
    orders = orders[:limit]

    if not orders:
        click.echo("No orders found")
        return

    click.echo(f"\n{'ID':<20} {'Status':<14} {'Modified':<20} {'Notes':<6}")
    click.echo("-" * 62)
    for o in orders:
        modified = o.date_modified.strftime("%Y-%m-%d %H:%M:%S") if o.date_modified else "-"
        click.echo(f"{o.id:<20} {o.status:<14} {modified:<20} {len(o.notes):<6}")
    click.echo()


@cli.command()
@click.argument("slug")
@click.pass_obj
def run(env: Environment, slug: str):
    """Run one batch of an instance now."""
    updater = env.load(slug)
    result = updater.really_update_orders()
    env.deferred.run_pending()

    if result is None:
        click.echo(f"✗ Batch for {slug} did not run (locked, invalidated or failed)", err=True)
        sys.exit(1)

    click.echo(f"✓ {slug}: {len(result.updated)} updated, {len(result.skipped)} skipped, "
               f"{len(result.failed)} failed (cutoff {result.cutoff:%Y-%m-%d})")
    if result.continued:
        click.echo("  More orders remain; a continuation is pending")


@cli.command()
@click.pass_obj
def tick(env: Environment):
    """Fire due events and resume pending continuations once."""
    poller = Poller(env.timer, env.hooks, env.deferred, env.load_all())
    ran = poller.tick()
    click.echo(f"✓ {ran} batch(es) ran")


@cli.group()
def worker():
    """Manage the poller process"""
    pass


@worker.command()
@click.option("--poll-interval", type=float, default=None, help="Seconds between polls")
@click.pass_obj
def start(env: Environment, poll_interval: Optional[float]):
    """Start the poller loop.

    Example:
        statusctl worker start --poll-interval 30
    """
    interval = poll_interval if poll_interval is not None else env.runtime.poll_interval
    if interval <= 0:
        click.echo("✗ Poll interval must be positive", err=True)
        sys.exit(1)

    poller = Poller(env.timer, env.hooks, env.deferred, env.load_all())
    click.echo(f"Starting poller for {len(poller.updaters)} instance(s)...")
    poller.run(interval)
    click.echo("Poller stopped")


@cli.command()
@click.pass_obj
def status(env: Environment):
    """Show schedule, lock and continuation state of every instance."""
    updaters = env.load_all()

    click.echo("\n" + "=" * 78)
    click.echo("statusctl Status")
    click.echo("=" * 78)
    if not updaters:
        click.echo("No instances configured")
    for updater in updaters:
        if updater.invalidated:
            click.echo(f"{updater.slug:<20} invalidated")
            continue
        continuation = updater.locks.continuation()
        pending = f"yes ({continuation.processed} processed)" if continuation else "no"
        click.echo(
            f"{updater.slug:<20} next {_format_ts(updater.next_scheduled()):<20} "
            f"{updater.frequency:<10} locked {'yes' if updater.locks.is_locked() else 'no':<4} "
            f"continuation {pending}"
        )
    orders = env.orders.get_all_orders()
    counts: Dict[str, int] = {}
    for o in orders:
        counts[o.status] = counts.get(o.status, 0) + 1
    click.echo(f"\nOrders: {len(orders)} " + " ".join(f"{k}={v}" for k, v in sorted(counts.items())))
    click.echo("=" * 78 + "\n")


if __name__ == "__main__":
    cli()
