"""Write reports to disk without clobbering earlier ones."""

import os
from typing import Tuple

# Upper bound on the numeric suffix tried before giving up on uniqueness.
MAX_SUFFIX = 9999


def unique_report_paths(directory: str, name: str) -> Tuple[str, str]:
    """Find a base name where neither the text report nor the graph exists.

    Tries ``<name>.txt`` / ``<name>_graph.png`` first, then
    ``<name>.2.txt`` / ``<name>.2_graph.png`` and so on.

    Returns:
        A tuple of (txt_path, png_path).
    """
    candidates = [name] + [f"{name}.{n}" for n in range(2, MAX_SUFFIX + 1)]
    for base in candidates:
        txt_path = os.path.join(directory, f"{base}.txt")
        png_path = os.path.join(directory, f"{base}_graph.png")
        if not os.path.exists(txt_path) and not os.path.exists(png_path):
            return txt_path, png_path
    base = f"{name}.{MAX_SUFFIX + 1}"
    return os.path.join(directory, f"{base}.txt"), os.path.join(directory, f"{base}_graph.png")


def save_report(path: str, content: str) -> None:
    """Write the report text, creating parent directories as needed."""
    parent = os.path.dirname(path)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
