"""
注入文本构建

- format_story_index: 每轮常驻的故事索引 (时间线、物品、相关角色态度)
- format_recalled_pages / format_dossier: 本轮召回的记忆页与角色档案
- format_page_catalog / format_character_catalog: 检索代理看到的目录
"""

from __future__ import annotations

from ..memory.types import MemoryStore, NPCDossier, Page


def mentioned_names(store: MemoryStore, text: str) -> set[str]:
    """返回在 text 中出现过的角色名 (NPC 与预设角色)"""
    lowered = text.lower()
    names = [c.name for c in store.characters] + [k.name for k in store.known_character_attitudes]
    return {n for n in names if n and n.lower() in lowered}


def format_story_index(store: MemoryStore, mentioned: set[str] | None = None) -> str:
    """
    故事索引

    mentioned 非空时只列出这些角色的态度, 否则列出全部。
    """
    parts = ["[故事索引]"]

    if store.timeline:
        parts.append("一、剧情时间线")
        parts.append(store.timeline)

    if store.items:
        parts.append("\n二、物品")
        for item in store.items:
            parts.append(f"· {item.name} | {item.status}")

    attitudes = [(k.name, k.attitude) for k in store.known_character_attitudes]
    attitudes += [(c.name, c.attitude) for c in store.characters]
    if mentioned:
        attitudes = [(n, a) for n, a in attitudes if n in mentioned]
    attitudes = [(n, a) for n, a in attitudes if a]
    if attitudes:
        parts.append("\n三、角色态度")
        parts.extend(f"· {name}: {attitude}" for name, attitude in attitudes)

    parts.append("[/故事索引]")
    return "\n".join(parts)


def format_recalled_pages(pages: list[Page]) -> str:
    if not pages:
        return ""
    parts = ["[记忆闪回]"]
    for page in pages:
        parts.append(f"回忆起了「{page.title}」({page.day})")
        parts.append(page.content)
        parts.append("")
    parts.append("[/记忆闪回]")
    return "\n".join(parts)


def format_dossier(character: NPCDossier) -> str:
    parts = [f"[角色档案: {character.name}]"]
    if character.appearance:
        parts.append(f"外貌: {character.appearance}")
    if character.personality:
        parts.append(f"性格: {character.personality}")
    if character.attitude:
        parts.append(f"态度: {character.attitude}")
    if character.current_state:
        parts.append(f"当前状态: {character.current_state}")
    parts.append("[/角色档案]")
    return "\n".join(parts)


def format_recalled(pages: list[Page], characters: list[NPCDossier]) -> str:
    blocks = [format_recalled_pages(pages)] + [format_dossier(c) for c in characters]
    return "\n\n".join(b for b in blocks if b)


def format_page_catalog(pages: list[Page]) -> str:
    lines = []
    for p in pages:
        categories = f" | {','.join(p.categories)}" if p.categories else ""
        lines.append(
            f"  [{p.id}] {p.day} | {p.title} | {p.compression_level.label}"
            f"{categories} | keywords: {','.join(p.keywords)}"
        )
    return "\n".join(lines)


def format_character_catalog(characters: list[NPCDossier]) -> str:
    return "\n".join(f"  {c.name}: {c.attitude or '(未知)'}" for c in characters)
