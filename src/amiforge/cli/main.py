"""Main CLI entry point."""

import sys
from typing import Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from amiforge.config.parser import Config, ConfigValidationError
from amiforge.provisioners import ChangeType, EC2ImageClient, ImageProvisioner, ProvisionPlan
from amiforge.state.manager import StateManager
from amiforge.state.models import ImageRecord, StateFile
from amiforge.utils.aws_client import AWSClientManager
from amiforge.utils.errors import ImageError, PartialFailureError
from amiforge.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

CHANGE_STYLES = {
    ChangeType.CREATE: "[green]+ create[/green]",
    ChangeType.UPDATE: "[yellow]~ update[/yellow]",
    ChangeType.REPLACE: "[magenta]-/+ replace[/magenta]",
    ChangeType.DELETE: "[red]- delete[/red]",
    ChangeType.NO_CHANGE: "[dim]no change[/dim]",
}


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--state', 'state_path', default='.amiforge/state.json', help='Path to state file')
@click.pass_context
def cli(ctx, profile, region, log_level, state_path):
    """Declarative lifecycle management for EC2 machine images."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level
    ctx.obj['state_path'] = state_path

    setup_logging(log_level)


def load_config(config_path: str = "amiforge.yaml") -> Config:
    """Load and validate configuration file."""
    try:
        config = Config(config_path)
        config.load()
        return config
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        sys.exit(1)


def create_provisioner(
    config: Config,
    profile: Optional[str] = None,
    region: Optional[str] = None
) -> ImageProvisioner:
    """Create the image provisioner for the configured account and region."""
    client_manager = AWSClientManager(
        profile=profile or config.provider.profile,
        region=region or config.provider.region
    )
    try:
        aws_region = client_manager.get_region()
        partition = client_manager.get_partition()
        ec2_client = client_manager.get_client('ec2')
    except Exception as e:
        console.print(f"[red]Error creating AWS session:[/red] {e}")
        sys.exit(1)

    return ImageProvisioner(
        EC2ImageClient(ec2_client),
        region=aws_region,
        partition=partition,
        timeouts=config.timeouts,
        provider=config.provider
    )


def persist(state_manager: StateManager, record: ImageRecord) -> None:
    """Write one record back; records that no longer track an image are dropped."""
    if record.exists:
        state_manager.put_record(record)
    elif state_manager.get_record(record.name) is not None:
        state_manager.remove_record(record.name)


def build_plans(
    provisioner: ImageProvisioner,
    config: Config,
    state: StateFile,
    image: Optional[str] = None
) -> List[ProvisionPlan]:
    """Plan every declared image plus every tracked image no longer declared."""
    plans = []

    for desired in config.get_images(image):
        record = state.get(desired.name)
        if record is None:
            record = ImageRecord(name=desired.name, config=desired)
        plans.append(provisioner.plan(record, desired))

    declared = {desired.name for desired in config.images}
    for name, record in sorted(state.images.items()):
        if name in declared or (image and name != image):
            continue
        plans.append(provisioner.plan(record, None))

    return plans


def report_error(error: Exception) -> None:
    if isinstance(error, ImageError):
        console.print(error.to_user_message(), style="red", markup=False)
        logger.debug(f"Error details: {error.to_dict()}")
    else:
        logger.exception("Unexpected error")
        console.print(f"[red]Unexpected error:[/red] {error}")


def _plan_details(plan: ProvisionPlan) -> str:
    if plan.replace_fields:
        return "forces replacement: " + ", ".join(plan.replace_fields)
    if plan.drift:
        return "drift: " + ", ".join(d.field for d in plan.drift)
    return ""


def print_plans(plans: List[ProvisionPlan]) -> None:
    table = Table(title="Image Plan", show_header=True, header_style="bold cyan")
    table.add_column("Image", style="cyan")
    table.add_column("Change")
    table.add_column("Image ID", style="green")
    table.add_column("Details", style="dim")

    for plan in plans:
        table.add_row(
            plan.record.name,
            CHANGE_STYLES[plan.change_type],
            plan.record.image_id or "(new)",
            _plan_details(plan)
        )

    console.print(table)

    counts: Dict[ChangeType, int] = {}
    for plan in plans:
        counts[plan.change_type] = counts.get(plan.change_type, 0) + 1
    console.print(
        f"\n[bold]Plan:[/bold] {counts.get(ChangeType.CREATE, 0)} to create, "
        f"{counts.get(ChangeType.UPDATE, 0)} to update, "
        f"{counts.get(ChangeType.REPLACE, 0)} to replace, "
        f"{counts.get(ChangeType.DELETE, 0)} to delete"
    )


@cli.command()
@click.option('--image', help='Specific image to plan')
@click.option('--config', default='amiforge.yaml', help='Path to configuration file')
@click.pass_context
def plan(ctx, image, config):
    """Show what apply would change."""
    cfg = load_config(config)
    provisioner = create_provisioner(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))

    try:
        state_manager = StateManager(ctx.obj['state_path'])
        if state_manager.exists():
            state = state_manager.load()
        else:
            state = StateFile(region=provisioner.region)
        print_plans(build_plans(provisioner, cfg, state, image))
    except ImageError as e:
        report_error(e)
        sys.exit(1)


@cli.command()
@click.option('--image', help='Specific image to apply')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.option('--config', default='amiforge.yaml', help='Path to configuration file')
@click.pass_context
def apply(ctx, image, yes, config):
    """Create, update, replace or delete images to match the configuration."""
    cfg = load_config(config)
    provisioner = create_provisioner(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))

    failures: Dict[str, Exception] = {}
    try:
        with StateManager(ctx.obj['state_path']) as state_manager:
            if not state_manager.exists():
                state_manager.initialize(provisioner.region)

            plans = build_plans(provisioner, cfg, state_manager.get_state(), image)
            print_plans(plans)

            changes = [p for p in plans if p.change_type != ChangeType.NO_CHANGE]
            if not changes:
                console.print("\n[green]✓ Images match the configuration[/green]")
                return

            if not yes and not click.confirm("\nApply these changes?", default=False):
                console.print("[yellow]Apply cancelled[/yellow]")
                return

            for change in changes:
                record = change.record
                try:
                    provisioner.provision(change)
                    console.print(
                        f"[green]✓[/green] {record.name}: {change.change_type.value} "
                        f"({record.image_id or 'deleted'})"
                    )
                except Exception as e:
                    failures[record.name] = e
                    console.print(f"[red]✗[/red] {record.name}: {change.change_type.value} failed")
                    report_error(e)
                finally:
                    persist(state_manager, record)
    except ImageError as e:
        report_error(e)
        sys.exit(1)

    if failures:
        console.print(Panel.fit(
            f"[red]✗ Apply failed for {len(failures)} image(s)[/red]\n\n"
            + "\n".join(sorted(failures)),
            title="Apply Failed",
            border_style="red"
        ))
        sys.exit(1)

    console.print(Panel.fit("[green]✓ Apply complete[/green]", border_style="green"))


@cli.command()
@click.argument('name', required=False)
@click.pass_context
def show(ctx, name):
    """Show tracked images from the state file."""
    state_manager = StateManager(ctx.obj['state_path'])
    if not state_manager.exists():
        console.print("[yellow]No images tracked yet[/yellow]")
        return

    try:
        state = state_manager.load()
    except ImageError as e:
        report_error(e)
        sys.exit(1)

    if name:
        record = state.get(name)
        if record is None:
            console.print(f"[red]Image not tracked:[/red] {name}")
            sys.exit(1)
        _show_record(record)
        return

    if not state.images:
        console.print("[yellow]No images tracked yet[/yellow]")
        return

    table = Table(title=f"Images in {state.region}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Image ID", style="green")
    table.add_column("Status", style="yellow")
    table.add_column("Owns Snapshots")
    table.add_column("Drift", style="red")

    for record_name, record in sorted(state.images.items()):
        table.add_row(
            record_name,
            record.image_id or "N/A",
            record.observed.status if record.observed else "unknown",
            "yes" if record.manage_ebs_snapshots else "no",
            ", ".join(d.field for d in record.drift)
        )

    console.print(table)


def _show_record(record: ImageRecord) -> None:
    info_table = Table(show_header=False, box=None)
    info_table.add_column("Field", style="cyan")
    info_table.add_column("Value", style="white")

    observed = record.observed
    info_table.add_row("Name", record.name)
    info_table.add_row("Image ID", record.image_id or "N/A")
    info_table.add_row("ARN", observed.arn if observed else "N/A")
    info_table.add_row("Status", observed.status if observed else "unknown")
    info_table.add_row("Root snapshot", (observed.root_snapshot_id if observed else "") or "N/A")
    info_table.add_row("Owns snapshots", "yes" if record.manage_ebs_snapshots else "no")
    info_table.add_row("Created", record.created_at.isoformat() if record.created_at else "N/A")

    console.print(Panel(info_table, title="Image", border_style="cyan"))

    if observed and observed.ebs_block_devices:
        devices = Table(show_header=True, header_style="bold")
        for column in ("Device", "Snapshot", "Size", "Type", "IOPS", "Encrypted"):
            devices.add_column(column)
        for device_name, device in observed.ebs_block_devices.items():
            devices.add_row(
                device_name,
                device.snapshot_id or "-",
                str(device.volume_size),
                device.volume_type,
                str(device.iops or "-"),
                "yes" if device.encrypted else "no"
            )
        console.print(Panel(devices, title="EBS Block Devices", border_style="blue"))

    if observed and observed.tags:
        tags_table = Table(show_header=False, box=None)
        tags_table.add_column("Key", style="cyan")
        tags_table.add_column("Value", style="white")
        for key, value in observed.tags.items():
            tags_table.add_row(key, value)
        console.print(Panel(tags_table, title="Tags", border_style="green"))

    if record.drift:
        drift_table = Table(show_header=True, header_style="bold red")
        drift_table.add_column("Field")
        drift_table.add_column("Declared")
        drift_table.add_column("Observed")
        for drift in record.drift:
            drift_table.add_row(drift.field, repr(drift.declared), repr(drift.observed))
        console.print(Panel(drift_table, title="Drift", border_style="red"))


@cli.command()
@click.option('--config', default='amiforge.yaml', help='Path to configuration file')
@click.pass_context
def refresh(ctx, config):
    """Re-read every tracked image and record drift."""
    cfg = load_config(config)
    provisioner = create_provisioner(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))

    failed = False
    try:
        with StateManager(ctx.obj['state_path']) as state_manager:
            if not state_manager.exists():
                console.print("[yellow]No images tracked yet[/yellow]")
                return

            for name, record in sorted(state_manager.get_state().images.items()):
                try:
                    observed = provisioner.read(record)
                except Exception as e:
                    failed = True
                    report_error(e)
                    continue
                finally:
                    persist(state_manager, record)

                if observed is None:
                    console.print(f"[yellow]{name}: image is gone, removed from state[/yellow]")
                elif record.drift:
                    console.print(f"[yellow]{name}: drift on {', '.join(d.field for d in record.drift)}[/yellow]")
                else:
                    console.print(f"[green]✓[/green] {name}: {observed.image_id} in sync")
    except ImageError as e:
        report_error(e)
        sys.exit(1)

    if failed:
        sys.exit(1)


@cli.command()
@click.argument('name', required=False)
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.option('--config', default='amiforge.yaml', help='Path to configuration file')
@click.pass_context
def destroy(ctx, name, yes, config):
    """Deregister tracked images and the snapshots they own."""
    cfg = load_config(config)
    provisioner = create_provisioner(cfg, ctx.obj.get('profile'), ctx.obj.get('region'))

    failures: Dict[str, Exception] = {}
    try:
        with StateManager(ctx.obj['state_path']) as state_manager:
            if not state_manager.exists():
                console.print("[yellow]No images tracked yet[/yellow]")
                return

            records = [
                record for record_name, record in sorted(state_manager.get_state().images.items())
                if name is None or record_name == name
            ]
            if not records:
                console.print(f"[yellow]Nothing to destroy{f' for {name}' if name else ''}[/yellow]")
                return

            console.print(Panel.fit(
                "[bold red]⚠ WARNING: This will deregister images[/bold red]\n\n"
                + "\n".join(f"{r.name} ({r.image_id})" for r in records),
                title="Destruction Plan",
                border_style="red"
            ))

            if not yes and not click.confirm(
                "Are you sure you want to destroy these images?",
                default=False
            ):
                console.print("[yellow]Destruction cancelled[/yellow]")
                return

            for record in records:
                try:
                    provisioner.provision(provisioner.plan(record, None))
                    console.print(f"[green]✓[/green] {record.name} destroyed")
                except Exception as e:
                    failures[record.name] = e
                    report_error(e)
                finally:
                    persist(state_manager, record)
    except ImageError as e:
        report_error(e)
        sys.exit(1)

    if failures:
        if any(isinstance(e, PartialFailureError) for e in failures.values()):
            console.print("\n[yellow]Some snapshots need manual cleanup[/yellow]")
        sys.exit(1)


if __name__ == '__main__':
    cli()
