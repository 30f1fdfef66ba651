"""
CLI 命令：progress
查看和编辑目标进度树
"""
import logging
from datetime import date
from typing import Optional

import click

from core.config_manager import config
from core.exceptions import ProgressTreeError
from core.logger import setup_logging
from core.progress_engine.repository import Identity, ProgressRepository
from core.progress_service import ProgressTreeService
from interface.gateways.base import SyncGateway
from interface.gateways.http_gateway import HttpSyncGateway
from interface.gateways.local_gateway import LocalSyncGateway
from interface.tree_renderer import TextTreeRenderer


def _build_gateway(url: Optional[str], user: str, role: str) -> SyncGateway:
    identity = Identity(user_id=user, role=role)
    if url:
        return HttpSyncGateway(base_url=url, identity=identity)
    return LocalSyncGateway(ProgressRepository(), identity)


@click.group()
@click.option("--url", default=None, help="Progress server API base URL; local data file when omitted.")
@click.option("--user", default=None, help="User id to act as.")
@click.option("--role", default="user", help="'admin' may edit any goal.")
@click.option("--verbose", "-v", is_flag=True, help="Echo INFO logs to the console.")
@click.pass_context
def progress(ctx, url, user, role, verbose):
    """Goal progress tree 管理命令"""
    setup_logging(console_level=logging.INFO if verbose else logging.WARNING)
    gateway = _build_gateway(url, user or config.DEFAULT_OWNER_ID, role)
    service = ProgressTreeService(gateway)
    try:
        service.load()
    except ProgressTreeError as e:
        raise click.ClickException(e.get_user_message())
    ctx.obj = service


def _run(action):
    try:
        return action()
    except ProgressTreeError as e:
        raise click.ClickException(e.get_user_message())


@progress.command()
@click.option("--collapsed", is_flag=True, help="Only show top-level goals.")
@click.pass_obj
def show(service: ProgressTreeService, collapsed):
    """显示目标树和完成度"""
    if not collapsed:
        for node in service.store.all_nodes():
            service.projector.set_expanded(node.id, True)
    service.render(TextTreeRenderer(write=click.echo))


@progress.command("add-goal")
@click.argument("label")
@click.option("--parent", default=None, help="Parent goal id; creates a root goal when omitted.")
@click.pass_obj
def add_goal(service: ProgressTreeService, label, parent):
    """新建目标（或子目标）"""
    if parent:
        node = _run(lambda: service.engine.add_child_goal(parent, label))
    else:
        node = _run(lambda: service.engine.add_root_goal(label))
    click.echo(f"✅ Added goal {node.id}")


@progress.command("add-check")
@click.argument("parent")
@click.argument("label")
@click.pass_obj
def add_check(service: ProgressTreeService, parent, label):
    """在目标下新建勾选项"""
    leaf = _run(lambda: service.engine.add_checklist_item(parent, label))
    click.echo(f"✅ Added checkbox {leaf.id}")


@progress.command("add-streak")
@click.argument("parent")
@click.argument("label")
@click.option("--days", type=click.IntRange(min=0), required=True, help="Target number of days.")
@click.option("--start", default=None, help="Start date YYYY-MM-DD (default: today).")
@click.pass_obj
def add_streak(service: ProgressTreeService, parent, label, days, start):
    """在目标下新建天数计数器"""
    start_date = start or date.today().isoformat()
    leaf = _run(lambda: service.engine.add_streak_leaf(parent, label, start_date, days))
    click.echo(f"✅ Added day counter {leaf.id}")


@progress.command()
@click.argument("item_id")
@click.pass_obj
def toggle(service: ProgressTreeService, item_id):
    """切换勾选项状态"""
    leaf = _run(lambda: service.engine.toggle_checklist_item(item_id))
    state = "checked" if leaf.checked else "unchecked"
    click.echo(f"☑️ {leaf.label}: {state}")
    if leaf.parent_id:
        click.echo(f"   {leaf.parent_id} is now {service.progress(leaf.parent_id)}%")


@progress.command()
@click.argument("goal_id")
@click.argument("label")
@click.pass_obj
def rename(service: ProgressTreeService, goal_id, label):
    """修改目标名称"""
    node = _run(lambda: service.engine.edit_goal(goal_id, label))
    click.echo(f"✏️ Renamed {node.id} to {node.label}")


@progress.command("edit-streak")
@click.argument("leaf_id")
@click.option("--days", type=click.IntRange(min=0), default=None, help="New target number of days.")
@click.option("--start", default=None, help="New start date YYYY-MM-DD.")
@click.option("--label", default=None)
@click.pass_obj
def edit_streak(service: ProgressTreeService, leaf_id, days, start, label):
    """修改天数计数器"""
    leaf = _run(lambda: service.engine.edit_streak_leaf(leaf_id, target_days=days, start_date=start, label=label))
    click.echo(f"✏️ {leaf.label}: {leaf.target_days} days from {leaf.start_date.isoformat()}")


@progress.command()
@click.argument("goal_id")
@click.argument("new_parent_id")
@click.pass_obj
def move(service: ProgressTreeService, goal_id, new_parent_id):
    """把目标移动到另一个目标下"""
    node = _run(lambda: service.engine.move_goal(goal_id, new_parent_id))
    click.echo(f"📦 Moved {node.id} under {node.parent_id}")


@progress.command()
@click.argument("entity_id")
@click.pass_obj
def delete(service: ProgressTreeService, entity_id):
    """删除目标（连同整棵子树）或单个叶子"""
    if service.store.get_node(entity_id) is not None:
        removed = _run(lambda: service.engine.delete_node(entity_id))
        click.echo(f"🗑️ Deleted {len(removed)} item(s)")
    else:
        _run(lambda: service.engine.delete_leaf(entity_id))
        click.echo(f"🗑️ Deleted {entity_id}")


if __name__ == "__main__":
    progress()
