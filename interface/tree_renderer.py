"""
Text renderer for projected goal trees.

Consumes the dicts produced by ViewProjector; knows nothing about
aggregation.
"""
from typing import Any, Callable, Dict, List, Optional

from core.config_manager import config


def progress_bar(percent: int, width: Optional[int] = None) -> str:
    """[#####.....]  50%"""
    width = width or config.PROGRESS_BAR_WIDTH
    filled = percent * width // 100
    return f"[{'#' * filled}{'.' * (width - filled)}] {percent:3d}%"


class TextTreeRenderer:
    """Render views as an indented text tree."""

    def __init__(self, write: Callable[[str], None] = print, width: Optional[int] = None):
        self._write = write
        self._width = width
        self.lines: List[str] = []

    def _emit(self, line: str) -> None:
        self.lines.append(line)
        self._write(line)

    def render(self, views: List[Dict[str, Any]]) -> None:
        self.lines = []
        if not views:
            self._emit("(no goals yet)")
            return
        for view in views:
            self._render_goal(view, depth=0)

    def _render_goal(self, view: Dict[str, Any], depth: int) -> None:
        indent = "  " * depth
        marker = "▾" if view["expanded"] else "▸"
        self._emit(
            f"{indent}{marker} {view['label']}  {progress_bar(view['progressPercent'], self._width)}"
            f"  ({view['id']})"
        )
        children = view.get("children")
        if not children:
            return

        inner = "  " * (depth + 1)
        for leaf in children["streakLeaves"]:
            status = "✔" if leaf["complete"] else " "
            self._emit(
                f"{inner}[{status}] {leaf['label']}  day {leaf['elapsedDays']}/{leaf['targetDays']}"
                f"  ({leaf['id']})"
            )
        for item in children["checklistItems"]:
            status = "x" if item["checked"] else " "
            self._emit(f"{inner}[{status}] {item['label']}  ({item['id']})")
        for child in children["childBars"]:
            self._render_goal(child, depth + 1)
