"""
Conversation Engine - Memory Blocks
===================================

Pure functions over lists of MemoryBlock. Every mutation returns a new list;
the input list and its blocks are left untouched. Block order is preserved.
"""

from typing import List, Optional

from conversation_engine.models import MemoryBlock, utc_now_iso


def find_block(blocks: List[MemoryBlock], label: str) -> Optional[MemoryBlock]:
    for block in blocks:
        if block.label == label:
            return block
    return None


def _stamp(block: MemoryBlock, value: str) -> MemoryBlock:
    return block.model_copy(update={"value": value, "last_updated": utc_now_iso()})


def update_block(blocks: List[MemoryBlock], label: str, new_value: str) -> List[MemoryBlock]:
    """Replace the whole value of `label`."""
    return [_stamp(b, new_value) if b.label == label else b for b in blocks]


def replace_in_block(
    blocks: List[MemoryBlock], label: str, old_text: str, new_text: str
) -> List[MemoryBlock]:
    """Replace the first occurrence of `old_text`. No-op on the value if absent."""
    return [
        _stamp(b, b.value.replace(old_text, new_text, 1)) if b.label == label else b
        for b in blocks
    ]


def insert_into_block(blocks: List[MemoryBlock], label: str, text: str) -> List[MemoryBlock]:
    """Append `text` on a new line."""
    return [_stamp(b, f"{b.value}\n{text}") if b.label == label else b for b in blocks]


def render_for_prompt(blocks: List[MemoryBlock]) -> str:
    """
    Serialize blocks for a system prompt, in list order:

        [LABEL]
        Description: ...
        Content:
        ...

    Blocks are separated by a blank line.
    """
    return "\n\n".join(
        f"[{b.label.upper()}]\nDescription: {b.description}\nContent:\n{b.value}"
        for b in blocks
    )
