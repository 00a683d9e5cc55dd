#!/usr/bin/env python3
"""
Reservation service CLI
Interactive booking chat plus the administrative bucket commands
"""

import asyncio
import json
import sys
import uuid

import click

from .config import load_config
from .error_models import ConfigurationError
from .lifecycle import build_runtime
from .logging_adapter import configure_logging
from .models import DialogueState, MessageTurnRequest

EXIT_WORDS = {"quit", "exit", "bye"}


@click.group()
@click.option('--backend', type=click.Choice(['memory', 'redis']), default=None,
              help='Storage backend (overrides RESERVATIONS_SESSIONS__BACKEND)')
@click.option('--log-level', default='WARNING', help='Log level for the structured log on stderr')
@click.pass_context
def cli(ctx, backend, log_level):
    """Restaurant reservation service"""
    # Settings validation logs too, and stdout is reserved for command output
    configure_logging(log_level, stream=sys.stderr)

    overrides = {'log_level': log_level}
    if backend:
        overrides['sessions'] = {'backend': backend}
    try:
        config = load_config(**overrides)
    except ConfigurationError as e:
        raise click.ClickException(f"{e.message}: {'; '.join(e.details.get('errors', []))}")

    if config.log_format != 'json':
        configure_logging(config.log_level, config.log_format, stream=sys.stderr)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--session-id', default=None, help='Resume or name a session')
@click.option('--location', default=None, help='City used for the seating advisory')
@click.pass_context
def chat(ctx, session_id, location):
    """Book a table interactively; one utterance per line"""
    config = ctx.obj['config']
    session_id = session_id or f"cli-{uuid.uuid4().hex[:8]}"

    async def _chat():
        async with build_runtime(config) as runtime:
            click.echo("agent> Hello! I'd be happy to help you book a table. May I have your name, please?")
            stream = click.get_text_stream('stdin')
            for line in stream:
                utterance = line.strip()
                if not utterance:
                    continue
                if utterance.lower() in EXIT_WORDS:
                    click.echo("agent> Goodbye!")
                    break

                response = await runtime.agent.handle_message(
                    MessageTurnRequest(session_id=session_id, utterance=utterance, location=location)
                )
                click.echo(f"agent> {response.prompt_text}")
                if response.state == DialogueState.COMPLETED:
                    break

    asyncio.run(_chat())


@cli.command()
@click.argument('date', type=click.DateTime(formats=['%Y-%m-%d']))
@click.option('--format', 'output_format', default='text', type=click.Choice(['json', 'text']))
@click.pass_context
def availability(ctx, date, output_format):
    """Show per-slot availability for DATE (YYYY-MM-DD)"""
    config = ctx.obj['config']

    async def _availability():
        async with build_runtime(config) as runtime:
            summary = await runtime.allocator.availability_summary(date.date())

        if output_format == 'json':
            click.echo(json.dumps(summary.model_dump(mode='json'), indent=2))
            return

        click.echo(f"Availability for {summary.date.isoformat()}")
        click.echo("=" * 40)
        for slot in summary.slots:
            click.echo(f"  {slot.time}  {slot.status.value:<13} {slot.booked}/{slot.capacity}")
        click.echo(f"Available: {summary.available_slots}  Fully booked: {summary.fully_booked_slots}  "
                   f"Blocked: {summary.blocked_slots}")
        click.echo(f"Capacity utilization: {summary.capacity_utilization:.2f}%")

    asyncio.run(_availability())


@cli.command()
@click.argument('date', type=click.DateTime(formats=['%Y-%m-%d']))
@click.argument('time')
@click.option('--reason', default=None, help='Why the slot is closed')
@click.option('--actor', default='cli', help='Who is blocking the slot')
@click.pass_context
def block(ctx, date, time, reason, actor):
    """Stop accepting bookings at DATE TIME"""
    config = ctx.obj['config']

    async def _block():
        async with build_runtime(config) as runtime:
            try:
                bucket = await runtime.allocator.block(date.date(), time, actor_id=actor, reason=reason)
            except ValueError as e:
                raise click.BadParameter(str(e), param_hint='TIME')
        click.echo(f"✓ Blocked {bucket.slot_date.isoformat()} {bucket.slot_time}"
                   f" ({bucket.booked}/{bucket.capacity} booked)")

    asyncio.run(_block())


@cli.command()
@click.argument('date', type=click.DateTime(formats=['%Y-%m-%d']))
@click.argument('time')
@click.pass_context
def unblock(ctx, date, time):
    """Accept bookings at DATE TIME again"""
    config = ctx.obj['config']

    async def _unblock():
        async with build_runtime(config) as runtime:
            try:
                bucket = await runtime.allocator.unblock(date.date(), time)
            except ValueError as e:
                raise click.BadParameter(str(e), param_hint='TIME')
        click.echo(f"✓ Unblocked {bucket.slot_date.isoformat()} {bucket.slot_time}")

    asyncio.run(_unblock())


@cli.command()
@click.argument('reservation_id')
@click.pass_context
def cancel(ctx, reservation_id):
    """Cancel a reservation and release its seats"""
    config = ctx.obj['config']

    async def _cancel():
        async with build_runtime(config) as runtime:
            reservation = await runtime.reservations.cancel(reservation_id)
        if reservation is None:
            raise click.ClickException(f"Unknown reservation {reservation_id}")
        click.echo(f"✓ Reservation {reservation.reservation_id} is {reservation.status.value}")

    asyncio.run(_cancel())


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
