"""Утилита для преобразования chat_id в правильный формат."""
from typing import Union


def convert_chat_id(chat_id: Union[str, int]) -> Union[str, int]:
    """
    Преобразовать идентификатор целевого канала для Pyrogram.

    Числовые идентификаторы (в том числе строки вида "-100...") становятся int,
    username возвращается без изменений, но с гарантированным "@".

    Args:
        chat_id: ID канала или username

    Returns:
        int для числовых ID, "@username" для остальных
    """
    if isinstance(chat_id, int):
        return chat_id
    cleaned = str(chat_id).strip()
    if cleaned.lstrip("-").isdigit():
        return int(cleaned)
    if cleaned.startswith("@"):
        return cleaned
    return f"@{cleaned}"
