"""File context assembled for every agent turn."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from relay.models.task import TaskBoard
from relay.tools.file_ops import WorkingSet, normalize_path


@dataclass
class ContextItem:
    """A file or fragment the user attached to the conversation."""
    path: str
    content: str
    type: str = "file"  # file, fragment
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextItem":
        return cls(
            path=data["path"],
            content=data.get("content", ""),
            type=data.get("type", "file"),
            start_line=data.get("start_line", data.get("startLine")),
            end_line=data.get("end_line", data.get("endLine")),
        )


FileTree = Sequence[Union[str, Dict[str, Any]]]


def flatten_file_tree(nodes: Optional[FileTree]) -> List[str]:
    """Flatten a tree of {type, path, children} nodes (or plain paths) into file paths."""
    paths: List[str] = []
    for node in nodes or []:
        if isinstance(node, str):
            paths.append(node)
        elif node.get("type") == "file":
            paths.append(node["path"])
        elif node.get("children"):
            paths.extend(flatten_file_tree(node["children"]))
    return paths


class ContextBuilder(ABC):
    @abstractmethod
    def build(
        self,
        context_items: Optional[Iterable[ContextItem]],
        file_tree: Optional[FileTree],
        working_set: WorkingSet,
        tasks: Optional[TaskBoard] = None,
    ) -> str:
        """Return the file-context text given to the active agent."""


class DefaultContextBuilder(ContextBuilder):
    """Structure, user-selected files, the session working set and the plan.

    A user-selected file that also appears in the working set is replaced by
    a note; the working set holds its latest content.
    """

    def build(self, context_items, file_tree, working_set, tasks=None) -> str:
        output = []

        paths = flatten_file_tree(file_tree)
        if paths:
            output.append("Project Files (Structure):\n" + "\n".join(paths) + "\n\n")

        items = list(context_items or [])
        if items:
            output.append("### ACTIVE CONTEXT (User Selected):\n")
            for item in items:
                if normalize_path(item.path) in working_set:
                    output.append(
                        f"\n> [NOTE]: User selected context for '{item.path}' is superseded "
                        "by recent session changes (see below).\n"
                    )
                elif item.type == "fragment":
                    output.append(
                        f"\n### FRAGMENT: {item.path} (Lines {item.start_line}-{item.end_line})\n"
                        f"{item.content}\n### END FRAGMENT\n"
                    )
                else:
                    output.append(f"\n### FILE: {item.path}\n{item.content}\n### END FILE\n")
            output.append("\n")

        if len(working_set):
            output.append("### RECENTLY MODIFIED FILES (Session Working Set):\n")
            output.append("> These files have been modified or read during this session. This is the LATEST content.\n")
            for path, content in working_set.items():
                output.append(f"\n### FILE: {path}\n{content}\n### END FILE\n")
            output.append("\n")

        if tasks is not None and len(tasks):
            output.append("### CURRENT PLAN STATUS:\n" + tasks.format_status() + "\n\n")

        return "".join(output)
