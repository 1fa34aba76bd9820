"""File extension to LSP language identifier."""

from __future__ import annotations

from pathlib import Path

_EXTENSION_LANGUAGE_IDS: dict[str, str] = {
    ".go": "go",
    ".py": "python",
    ".pyi": "python",
    ".rs": "rust",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".java": "java",
    ".json": "json",
    ".sh": "shellscript",
    ".md": "markdown",
    ".html": "html",
    ".css": "css",
}

_FILENAME_LANGUAGE_IDS: dict[str, str] = {
    "makefile": "makefile",
    "dockerfile": "dockerfile",
    "go.mod": "go.mod",
}


def language_id_for_path(path: str) -> str:
    """Return the language id for ``path``.

    Unknown extensions fall back to the extension itself without its dot, and
    files without an extension to ``plaintext``.
    """
    name = Path(path).name.lower()
    if name in _FILENAME_LANGUAGE_IDS:
        return _FILENAME_LANGUAGE_IDS[name]
    suffix = Path(path).suffix.lower()
    if suffix in _EXTENSION_LANGUAGE_IDS:
        return _EXTENSION_LANGUAGE_IDS[suffix]
    return suffix[1:] or "plaintext"
