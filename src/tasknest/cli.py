"""
Command Line Interface for tasknest.
"""

import functools
from pathlib import Path

import click

from .version import VERSION
from .models import TaskNode, TaskStatus
from .recovery import TaskNestError, FieldValidationError
from .settings import Settings
from .templates import BUILTIN_TEMPLATES, get_template, load_template

STATUS_MARKERS = {
    TaskStatus.NOT_STARTED: "○",
    TaskStatus.IN_PROGRESS: "◐",
    TaskStatus.COMPLETED: "●",
}

SHORT_ID = 8


def format_duration(millis: int) -> str:
    """Render milliseconds as a compact h/m/s string."""
    seconds = (millis or 0) // 1000
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def describe(node: TaskNode) -> str:
    line = f"{STATUS_MARKERS[node.status]} {node.title} [{node.id[:SHORT_ID]}] {node.completion_percentage:g}%"
    if node.time_spent:
        line += f" ⏱️ {format_duration(node.time_spent)}"
    return line


def handles_errors(command):
    """Print tasknest errors as one line and exit with status 1."""
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except TaskNestError as e:
            click.echo(f"❌ {e}", err=True)
            click.get_current_context().exit(1)
    return wrapper


def resolve(ctx, ref):
    """Turn a full id or a unique id prefix into a node id."""
    if ref is None:
        return None
    service, owner = ctx.obj['service'], ctx.obj['owner']
    matches = [node.id for _, node in service.walk(owner) if node.id.startswith(ref)]
    if ref in matches:
        return ref
    if len(matches) == 1:
        return matches[0]
    if not matches:
        # let the service report not-found or not-authorized for full ids
        return ref
    raise FieldValidationError(f"Id prefix '{ref}' is ambiguous ({len(matches)} matches)")


@click.group()
@click.version_option(version=VERSION, prog_name="tasknest")
@click.option('--owner', envvar='TASKNEST_OWNER', help='Owner id to act as')
@click.option('--data-file', envvar='TASKNEST_DATA_FILE', type=click.Path(dir_okay=False, path_type=Path),
              help='Task table file (YAML, or JSON by suffix)')
@click.pass_context
def main(ctx, owner, data_file):
    """
    tasknest - A hierarchical task and progress tracker.

    Ids can be abbreviated to any unique prefix.
    """
    try:
        settings = Settings.from_env(owner=owner, data_file=data_file)
        service = settings.build_service()
    except TaskNestError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)
    ctx.obj = {'service': service, 'owner': settings.owner, 'settings': settings}


@main.command()
@click.argument('title')
@click.option('-p', '--parent', help='Parent task id')
@click.option('-d', '--description', help='Task description')
@click.pass_context
@handles_errors
def add(ctx, title, parent, description):
    """Add a new task."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.create_node(owner, resolve(ctx, parent), title, description)
    click.echo(f"✅ Added {describe(node)}")


@main.command(name='ls')
@click.argument('root', required=False)
@click.pass_context
@handles_errors
def list_tasks(ctx, root):
    """Show the task tree (or the subtree under ROOT)."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    root_id = resolve(ctx, root)
    base = None
    count = 0
    for depth, node in service.walk(owner, root_id):
        if base is None:
            base = depth
        click.echo(f"{'  ' * (depth - base)}{describe(node)}")
        count += 1
    if not count:
        click.echo("📭 No tasks yet")
        click.echo("💡 Use 'tasknest add TITLE' to create one")


@main.command()
@click.argument('ref')
@click.pass_context
@handles_errors
def show(ctx, ref):
    """Show the details of one task."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node_id = resolve(ctx, ref)
    node = service.get_node(owner, node_id)
    click.echo(f"📝 {node.title}")
    click.echo(f"   🆔 Id: {node.id}")
    if node.description:
        click.echo(f"   📄 Description: {node.description}")
    click.echo(f"   📍 Depth: {service.node_depth(owner, node_id)}")
    click.echo(f"   📊 Status: {node.status.value} ({node.completion_percentage:g}%)")
    click.echo(f"   ⏱️  Time: {format_duration(node.time_spent)}"
               f" (subtree {format_duration(service.total_time(owner, node_id))})")
    click.echo(f"   🌿 Leaf: {'yes' if service.is_leaf(owner, node_id) else 'no'}")


@main.command()
@click.argument('ref')
@click.option('-t', '--title', help='New title')
@click.option('-d', '--description', help='New description')
@click.pass_context
@handles_errors
def edit(ctx, ref, title, description):
    """Change the title or description of a task."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    fields = {k: v for k, v in (('title', title), ('description', description)) if v is not None}
    if not fields:
        click.echo("💡 Nothing to change; pass --title and/or --description")
        return
    node = service.edit_node(owner, resolve(ctx, ref), **fields)
    click.echo(f"✅ Updated {describe(node)}")


@main.command()
@click.argument('ref')
@click.pass_context
@handles_errors
def advance(ctx, ref):
    """Advance a task: not started -> in progress -> completed -> not started."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.advance_status(owner, resolve(ctx, ref))
    click.echo(f"✅ {describe(node)}")


@main.command(name='progress')
@click.argument('ref')
@click.argument('percentage', type=float)
@click.pass_context
@handles_errors
def set_progress(ctx, ref, percentage):
    """Set the completion percentage (0-100) of a task."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.set_progress(owner, resolve(ctx, ref), percentage)
    click.echo(f"✅ {describe(node)}")


@main.command()
@click.argument('ref')
@click.argument('millis', type=int, required=False)
@click.option('-m', '--minutes', type=float, help='Time to add in minutes')
@click.pass_context
@handles_errors
def track(ctx, ref, millis, minutes):
    """Add elapsed time to a task (milliseconds, or --minutes)."""
    if (millis is None) == (minutes is None):
        raise click.UsageError("Give either MILLIS or --minutes")
    delta = millis if millis is not None else int(round(minutes * 60_000))
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.accumulate_time(owner, resolve(ctx, ref), delta)
    click.echo(f"⏱️  {describe(node)}")


@main.command(name='reset-time')
@click.argument('ref')
@click.pass_context
@handles_errors
def reset_time(ctx, ref):
    """Reset the tracked time of a task to zero."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.reset_time(owner, resolve(ctx, ref))
    click.echo(f"✅ {describe(node)}")


@main.command()
@click.argument('ref')
@click.option('-p', '--parent', help='New parent task id')
@click.option('--root', is_flag=True, help='Make the task a top-level task')
@click.pass_context
@handles_errors
def mv(ctx, ref, parent, root):
    """Move a task (and its subtasks) under another parent."""
    if bool(parent) == root:
        raise click.UsageError("Give exactly one of --parent or --root")
    service, owner = ctx.obj['service'], ctx.obj['owner']
    node = service.move_node(owner, resolve(ctx, ref), resolve(ctx, parent))
    click.echo(f"✅ Moved {describe(node)}")


@main.command(name='reorder')
@click.argument('refs', nargs=-1, required=True)
@click.option('-p', '--parent', help='Parent whose children are reordered (top level when omitted)')
@click.pass_context
@handles_errors
def reorder_tasks(ctx, refs, parent):
    """Put the children of a parent in the order given."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    nodes = service.reorder_children(owner, resolve(ctx, parent), [resolve(ctx, r) for r in refs])
    for node in nodes:
        click.echo(f"{node.order}. {describe(node)}")


@main.command()
@click.argument('ref')
@click.confirmation_option(prompt='Delete this task and all of its subtasks?')
@click.pass_context
@handles_errors
def rm(ctx, ref):
    """Delete a task and all of its subtasks."""
    service, owner = ctx.obj['service'], ctx.obj['owner']
    deleted = service.delete_subtree(owner, resolve(ctx, ref))
    click.echo(f"🗑️  Deleted {deleted} task(s)")


@main.group()
def template():
    """Project templates."""
    pass


@template.command(name='list')
def list_templates():
    """List the built-in templates."""
    for name, tpl in sorted(BUILTIN_TEMPLATES.items()):
        click.echo(f"🗂️  {name}: {tpl.title} ({len(tpl.tasks)} tasks)")
        if tpl.description:
            click.echo(f"   {tpl.description}")


@template.command(name='apply')
@click.argument('name', required=False)
@click.option('-f', '--file', 'file_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Load the template from a YAML/JSON file instead')
@click.option('-p', '--parent', help='Create the project under this task')
@click.option('-t', '--title', help='Title for the new project')
@click.pass_context
@handles_errors
def apply_template(ctx, name, file_path, parent, title):
    """Create a new project from a template."""
    if bool(name) == bool(file_path):
        raise click.UsageError("Give either a template NAME or --file")
    tpl = load_template(file_path) if file_path else get_template(name)
    service, owner = ctx.obj['service'], ctx.obj['owner']
    root = service.create_from_template(owner, tpl, resolve(ctx, parent), title)
    click.echo(f"✅ Created {describe(root)} from '{tpl.title}'")


if __name__ == "__main__":
    main()
