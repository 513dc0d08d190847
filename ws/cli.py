"""Command line front end for one device: inspect and drive the local session and settings."""

import signal
import sys
from pathlib import Path

import click
from PySide6.QtCore import QCoreApplication, QTimer

from ws.app import Device
from ws.common.logger import enable_console, log
from ws.common.setup import ProjectPaths
from ws.core.errors import AlreadyRunning, NotRunning, PermissionRequired
from ws.notify.center import PermissionStatus, QtNotificationCenter
from ws.sync.channel import LoopbackChannel
from ws.util import format_duration, format_hhmm, now, parse_hhmm

REFRESH_INTERVAL_MS = 60 * 1000


def _ensure_qt_app():
    return QCoreApplication.instance() or QCoreApplication(sys.argv[:1])


# Builds the device for this invocation; it is closed again when the click context ends.
def _build_device(ctx):
    _ensure_qt_app()
    home = ctx.obj["home"]
    paths = ProjectPaths.build(Path(home)) if home else ProjectPaths.build()
    # No peer link exists inside a single CLI process, so outgoing envelopes just wait in the outbox.
    channel = LoopbackChannel(name="cli")
    center = QtNotificationCenter(permission=PermissionStatus.AUTHORIZED)
    device = Device(channel, center, state_path=paths.state_file, history_dir=paths.sessions)
    ctx.call_on_close(device.close)
    return device


def _parse_switch(value):
    return None if value is None else value == "on"


def _echo_status(device):
    record = device.records.current()
    settings = device.settings.current()
    click.echo(f"Device:   {device.device_id}")
    if record.is_running:
        end = device.estimated_end()
        click.echo(f"Session:  running since {record.started_at:%Y-%m-%d %H:%M}")
        click.echo(f"Ends:     {end:%Y-%m-%d %H:%M} ({format_duration((end - now()).total_seconds())} left)")
    else:
        click.echo("Session:  idle")
    click.echo(f"Length:   {settings.session_length}h")
    click.echo(f"Notify:   end {'on' if settings.notify_end else 'off'}, "
               f"reminder {'on at ' + format_hhmm(settings.reminder_time) if settings.reminder_start else 'off'}")
    for intent in device.scheduler.scheduled().values():
        click.echo(f"Alert:    {intent.id} at {intent.fires_at:%Y-%m-%d %H:%M}")


@click.group()
@click.option("--home", type=click.Path(file_okay=False), default=None,
              help="Data directory to use instead of WEARSYNC_HOME / the default.")
@click.option("--verbose", "-v", is_flag=True, help="Also log to the console.")
@click.pass_context
def cli(ctx, home, verbose):
    """Track a wear session and keep its reminders scheduled."""
    if verbose:
        enable_console(log)
    ctx.obj = {"home": home}


@cli.command()
@click.pass_context
def status(ctx):
    """Show the current session, settings and scheduled alerts."""
    _echo_status(_build_device(ctx))


@cli.command()
@click.option("--hours", type=click.IntRange(0, 23), default=None, help="Session length to set before starting.")
@click.pass_context
def start(ctx, hours):
    """Start a session now."""
    device = _build_device(ctx)
    # Refuse before touching the shared session length.
    if device.records.current().is_running:
        raise click.ClickException(str(AlreadyRunning()))
    try:
        if hours is not None:
            device.set_session_length(hours)
        device.start()
    except AlreadyRunning as e:
        raise click.ClickException(str(e))
    _echo_status(device)


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop the running session."""
    device = _build_device(ctx)
    try:
        device.stop()
    except NotRunning as e:
        raise click.ClickException(str(e))
    _echo_status(device)


@cli.command()
@click.option("--length", type=click.IntRange(0, 23), default=None, help="Session length in hours.")
@click.option("--notify-end", type=click.Choice(["on", "off"]), default=None)
@click.option("--reminder", type=click.Choice(["on", "off"]), default=None)
@click.option("--reminder-time", default=None, help="Daily reminder time, HH:MM.")
@click.pass_context
def settings(ctx, length, notify_end, reminder, reminder_time):
    """Show or change settings."""
    device = _build_device(ctx)
    try:
        if length is not None:
            device.set_session_length(length)
        if reminder_time is not None:
            device.set_reminder_time(parse_hhmm(reminder_time))
        if notify_end is not None:
            device.set_notify_end(_parse_switch(notify_end))
        if reminder is not None:
            device.set_reminder_start(_parse_switch(reminder))
    except ValueError as e:
        raise click.BadParameter(str(e))
    except PermissionRequired as e:
        raise click.ClickException(str(e))
    _echo_status(device)


@cli.command()
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def history(ctx, limit):
    """List completed sessions, newest first."""
    device = _build_device(ctx)
    entries = device.history(limit)
    if not entries:
        click.echo("No completed sessions yet.")
    for entry in entries:
        click.echo(f"{entry['started_at'][:16]}  ->  {entry['ended_at'][:16]}  "
                   f"worn {format_duration(entry['worn_seconds'])} of {entry['duration_hours']}h")


@cli.command()
@click.option("--seconds", type=int, default=None, help="Quit after this many seconds (runs until Ctrl+C otherwise).")
@click.pass_context
def run(ctx, seconds):
    """Stay in the foreground, firing alerts as they come due."""
    app = _ensure_qt_app()
    device = _build_device(ctx)
    device.notification_center.alert_fired.connect(
        lambda notification_id, payload: click.echo(f"[{now():%H:%M}] {payload.get('title')}: {payload.get('body')}"))

    # Periodic refresh, also keeps the session-end alert in step if the clock jumped.
    refresh = QTimer()
    refresh.timeout.connect(device.coordinator.refresh_notifications)
    refresh.start(REFRESH_INTERVAL_MS)

    # Let Python see Ctrl+C while the Qt loop is running.
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wake = QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(250)

    if seconds is not None:
        QTimer.singleShot(seconds * 1000, app.quit)
    _echo_status(device)
    app.exec()
