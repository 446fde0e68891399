"""注入文本构建"""

from .builder import (
    format_character_catalog,
    format_dossier,
    format_page_catalog,
    format_recalled,
    format_recalled_pages,
    format_story_index,
    mentioned_names,
)

__all__ = [
    "format_character_catalog",
    "format_dossier",
    "format_page_catalog",
    "format_recalled",
    "format_recalled_pages",
    "format_story_index",
    "mentioned_names",
]
