"""
Architectural layers for tasks.

File-required layers describe implementation work, so a task placed in one
of them must declare its file actions (an empty list is an explicit
declaration). File-optional layers cover work that produces no files.
"""

FILE_REQUIRED_LAYERS: tuple[str, ...] = (
    "presentation",
    "business",
    "data",
    "infrastructure",
    "cross-cutting",
    "documentation",
)

FILE_OPTIONAL_LAYERS: tuple[str, ...] = (
    "planning",
    "coordination",
    "review",
)

STANDARD_LAYERS: tuple[str, ...] = FILE_REQUIRED_LAYERS + FILE_OPTIONAL_LAYERS


def is_file_required(layer: "str | None") -> bool:
    return layer is not None and layer in FILE_REQUIRED_LAYERS


def layer_help() -> str:
    """Guidance appended to layer validation errors."""
    return (
        f"FILE_REQUIRED layers ({len(FILE_REQUIRED_LAYERS)}): {', '.join(FILE_REQUIRED_LAYERS)}\n"
        "  -> must provide file_actions (use [] for tasks that touch no files)\n"
        f"FILE_OPTIONAL layers ({len(FILE_OPTIONAL_LAYERS)}): {', '.join(FILE_OPTIONAL_LAYERS)}\n"
        "  -> file_actions is optional\n"
        "Example: file_actions=[{'action': 'edit', 'path': 'src/model/user.py'}]"
    )
