"""Page context providers and prompt context formatting."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from assistant.collaborators import PageContext
from assistant.conversation import Message

_PAGE_TEXT_LIMIT = 4000
_HISTORY_SNIPPET = 200


class StaticContextProvider:
    """Serves a fixed page; used by the CLI and tests."""

    def __init__(self, page: Optional[PageContext] = None) -> None:
        self.page = page

    def set_page(self, page: Optional[PageContext]) -> None:
        self.page = page

    def extract_current_page_context(self) -> Optional[PageContext]:
        return self.page


class FileContextProvider:
    """Reads the current page text from a file on every request."""

    def __init__(self, path: Path | str, *, title: Optional[str] = None, url: Optional[str] = None) -> None:
        self.path = Path(path).expanduser()
        self.title = title
        self.url = url

    def extract_current_page_context(self) -> Optional[PageContext]:
        if not self.path.exists():
            return None
        text = self.path.read_text(encoding="utf-8", errors="replace")
        return PageContext(title=self.title or self.path.stem, text=text, url=self.url)


def format_context(
    page: Optional[PageContext],
    history: Sequence[Message] = (),
    *,
    include_history: bool = False,
    page_limit: int = _PAGE_TEXT_LIMIT,
) -> Optional[str]:
    """Render page content (and optionally recent history) as a prompt context block."""
    parts: list[str] = []
    if page is not None and page.text.strip():
        header = f"Current page: {page.title}"
        if page.url:
            header += f" ({page.url})"
        parts.append(header)
        parts.append(page.text.strip()[:page_limit])

    if include_history and history:
        lines = []
        for message in history:
            content = message.content
            if len(content) > _HISTORY_SNIPPET:
                content = content[:_HISTORY_SNIPPET] + "..."
            lines.append(f"{message.role.value}: {content}")
        parts.append("Recent conversation:\n" + "\n".join(lines))

    if not parts:
        return None
    return "\n\n".join(parts)


__all__ = ["StaticContextProvider", "FileContextProvider", "format_context"]
