"""CLI commands for santavid using Typer and Rich.

Operator commands:
- create-order: Create an order for local testing
- run: Run one orchestrator invocation for an order
- poll: Run one scene poll cycle
- watch: Invoke the orchestrator on an interval until the order is terminal
- sweep: One orchestrator pass over every in-flight order
- retry: Reset a failed order and run it again
- status: Show detailed order status
- list: List orders in a table
"""

import asyncio
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import select

from santavid import configure_logging, validate_dependencies
from santavid.config import settings
from santavid.db import async_session, init_database
from santavid.db.models import Order, PipelineRun
from santavid.errors import SantaVidError
from santavid.orchestrator import state
from santavid.orchestrator.pipeline import (
    build_default_services,
    poll_scenes,
    retry_order,
    run_pipeline,
)
from santavid.services import order_service

app = typer.Typer(name="santavid", help="Santa video order pipeline")
console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging.level"),
):
    configure_logging(log_level)


def _parse_order_id(order_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(order_id)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid order UUID: {order_id}")
        raise typer.Exit(code=1)


def _require_ffmpeg() -> None:
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


def _get_status_color(status: str) -> str:
    """Rich color for an order status."""
    if status == state.COMPLETE:
        return "green"
    elif status == state.FAILED:
        return "red"
    elif status in state.GENERATION_ELIGIBLE or status == state.STITCHING:
        return "yellow"
    elif status in (state.DRAFT, state.PENDING_PAYMENT):
        return "dim"
    else:
        return "white"


def _status_display(status: str) -> str:
    color = _get_status_color(status)
    return f"[{color}]{status}[/{color}]"


@app.command("create-order")
def create_order(
    user_id: str = typer.Option(..., "--user", "-u", help="Owner user id"),
    child: list[str] = typer.Option(
        ..., "--child", "-c",
        help="name:age:good behavior:thing to improve:thing to learn (repeat up to 3 times)",
    ),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Customer e-mail"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Custom message from parents"),
    paid: bool = typer.Option(False, "--paid", help="Mark the order paid immediately"),
):
    """Create an order (pending_payment, or paid with --paid)."""
    children = []
    for value in child:
        parts = value.split(":")
        if len(parts) != 5 or not parts[1].isdigit():
            console.print(f"[red]Error:[/red] Invalid --child value: {value}")
            raise typer.Exit(code=1)
        name, age, good, improve, learn = parts
        children.append({
            "name": name,
            "age": int(age),
            "good_behavior": good,
            "thing_to_improve": improve,
            "thing_to_learn": learn,
        })

    asyncio.run(_create_order_async(user_id, children, email, message, paid))


async def _create_order_async(user_id, children, email, message, paid):
    await init_database()
    async with async_session() as session:
        try:
            order = await order_service.create_order(
                session, user_id=user_id, customer_email=email, children=children, custom_message=message,
            )
            if paid:
                await order_service.mark_paid(session, order.id, payment_reference="cli")
        except SantaVidError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Created order {order.id}")


@app.command()
def run(
    order_id: str = typer.Argument(..., help="Order UUID"),
):
    """Run one orchestrator invocation for an order."""
    _require_ffmpeg()
    asyncio.run(_run_async(_parse_order_id(order_id), trigger="cli"))


async def _run_async(order_uuid: uuid.UUID, trigger: str) -> str:
    await init_database()
    services = build_default_services()

    async with async_session() as session:
        try:
            with console.status("[bold green]Running pipeline...") as status:
                def callback_wrapper(msg: str):
                    status.update(f"[bold green]{msg}")

                result = await run_pipeline(
                    session, order_uuid, services, trigger=trigger, progress_callback=callback_wrapper
                )
        except KeyboardInterrupt:
            console.print()
            console.print(f"[yellow]Interrupted. Resume later with:[/yellow] santavid run {order_uuid}")
            raise typer.Exit(code=130)

        except Exception as e:
            console.print()
            console.print(f"[red]✗ Pipeline failed:[/red] {str(e)}")
            console.print(f"[yellow]The order can be retried with:[/yellow] santavid retry {order_uuid} --user <owner>")
            raise typer.Exit(code=1)

    console.print(f"Order {order_uuid}: {_status_display(result)}")
    return result


@app.command()
def poll(
    order_id: str = typer.Argument(..., help="Order UUID"),
):
    """Run one scene poll cycle and show per-scene results (does not stitch)."""
    asyncio.run(_poll_async(_parse_order_id(order_id)))


async def _poll_async(order_uuid: uuid.UUID):
    await init_database()
    services = build_default_services()

    async with async_session() as session:
        try:
            order = await order_service.get_order(session, order_uuid)
            if order.status != state.GENERATING_SCENES:
                console.print(f"[yellow]Order is {order.status}; nothing to poll[/yellow]")
                return
            result = await poll_scenes(session, order_uuid, services)
        except SantaVidError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Scene")
    table.add_column("Status")
    table.add_column("Polls")
    table.add_column("Detail")
    for op in result.operations:
        detail = op.video_url or op.error or ""
        table.add_row(str(op.scene_number), _status_display(op.status), str(op.poll_count), detail)
    console.print(table)
    console.print(
        f"{result.completed_count}/{result.total_count} complete"
        + (" [red](failures)[/red]" if result.any_failed else "")
    )


@app.command()
def watch(
    order_id: str = typer.Argument(..., help="Order UUID"),
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Seconds between invocations"),
):
    """Invoke the orchestrator on an interval until the order is terminal."""
    _require_ffmpeg()
    asyncio.run(_watch_async(_parse_order_id(order_id), interval or settings.pipeline.video_poll_interval))


async def _watch_async(order_uuid: uuid.UUID, interval: int):
    while True:
        result = await _run_async(order_uuid, trigger="watch")
        if result not in state.GENERATION_ELIGIBLE:
            break
        await asyncio.sleep(interval)


@app.command()
def sweep():
    """One orchestrator pass over every order that is mid-pipeline."""
    _require_ffmpeg()
    asyncio.run(_sweep_async())


async def _sweep_async():
    await init_database()
    services = build_default_services()

    async with async_session() as session:
        result = await session.execute(
            select(Order.id).where(Order.status.in_(state.GENERATION_ELIGIBLE)).order_by(Order.created_at)
        )
        order_ids = list(result.scalars().all())

    if not order_ids:
        console.print("[yellow]No in-flight orders[/yellow]")
        return

    for order_uuid in order_ids:
        async with async_session() as session:
            try:
                status = await run_pipeline(session, order_uuid, services, trigger="sweep")
                console.print(f"{order_uuid}: {_status_display(status)}")
            except Exception as e:
                console.print(f"{order_uuid}: [red]{type(e).__name__}: {e}[/red]")


@app.command()
def retry(
    order_id: str = typer.Argument(..., help="Order UUID"),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner user id"),
):
    """Reset a failed order to paid and run the pipeline again."""
    _require_ffmpeg()
    asyncio.run(_retry_async(_parse_order_id(order_id), user_id))


async def _retry_async(order_uuid: uuid.UUID, user_id: str):
    await init_database()
    async with async_session() as session:
        try:
            await retry_order(session, order_uuid, user_id)
        except SantaVidError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)
    console.print(f"[yellow]Order {order_uuid} reset to paid[/yellow]")
    await _run_async(order_uuid, trigger="retry")


@app.command()
def status(
    order_id: str = typer.Argument(..., help="Order UUID"),
):
    """Show detailed order status and information."""
    asyncio.run(_status_async(_parse_order_id(order_id)))


async def _status_async(order_uuid: uuid.UUID):
    await init_database()

    async with async_session() as session:
        try:
            order = await order_service.get_order(session, order_uuid, with_children=True)
        except SantaVidError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)
        operations = await order_service.load_scene_operations(session, order_uuid)

        run_result = await session.execute(
            select(PipelineRun)
            .where(PipelineRun.order_id == order.id)
            .order_by(PipelineRun.started_at.desc())
            .limit(1)
        )
        latest_run = run_result.scalar_one_or_none()

    info_lines = [
        f"[bold]ID:[/bold] {order.id}",
        f"[bold]Status:[/bold] {_status_display(order.status)} ({state.ORDER_STATES.get(order.status, '')})",
        f"[bold]Children:[/bold] {', '.join(c.name for c in order.children)}",
        f"[bold]Keyframes:[/bold] {len(order.keyframe_urls or [])}",
        f"[bold]Created:[/bold] {order.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Updated:[/bold] {order.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if operations:
        done = sum(1 for op in operations if op.status == "complete")
        failed = sum(1 for op in operations if op.status == "failed")
        info_lines.append(f"[bold]Scenes:[/bold] {done}/{len(operations)} complete, {failed} failed")
    if order.final_video_url:
        info_lines.append(f"[bold]Video:[/bold] [green]{order.final_video_url}[/green]")
    if order.status == state.FAILED and order.error_message:
        info_lines.append(f"[bold]Error:[/bold] [red]{order.error_message}[/red]")
    if latest_run and latest_run.total_duration_seconds is not None:
        info_lines.append(
            f"[bold]Last Run:[/bold] {latest_run.trigger}, {latest_run.total_duration_seconds:.1f}s, "
            f"ended {latest_run.outcome}"
        )

    console.print(Panel("\n".join(info_lines), title="[bold]Order Status[/bold]", border_style="blue"))


@app.command(name="list")
def list_orders(
    status_filter: Optional[str] = typer.Option(None, "--status", "-s", help="Only orders in this status"),
):
    """List orders, newest first."""
    asyncio.run(_list_async(status_filter))


async def _list_async(status_filter: Optional[str]):
    await init_database()

    async with async_session() as session:
        stmt = select(Order).order_by(Order.created_at.desc())
        if status_filter:
            stmt = stmt.where(Order.status == status_filter)
        orders = (await session.execute(stmt)).scalars().all()

    if not orders:
        console.print("[yellow]No orders found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("User")
    table.add_column("Children")
    table.add_column("Status")
    table.add_column("Created")

    for order in orders:
        table.add_row(
            str(order.id)[:8] + "...",
            order.user_id,
            str(order.child_count),
            _status_display(order.status),
            order.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


if __name__ == "__main__":
    app()
