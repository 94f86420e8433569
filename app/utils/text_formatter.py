"""
Конвертация форматирования постов.

Три представления текста:

* plain text + entity-диапазоны (offset/length в UTF-16 code units, как их
  отдает Telegram);
* Markdown;
* Telegram HTML (то, что отправляется с ``parse_mode=html``).

Все функции чистые: без I/O и без состояния.
"""
import html
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.utils.enums import EntityType
from app.utils.logger import get_logger

logger = get_logger(__name__)

MD_CHARS = "*_~`|"


@dataclass(frozen=True)
class EntityRange:
    """Диапазон форматирования поверх plain text (в UTF-16 code units)."""
    offset: int
    length: int
    type: str
    url: Optional[str] = None
    language: Optional[str] = None

    @property
    def end(self) -> int:
        return self.offset + self.length

    def to_dict(self) -> Dict[str, Any]:
        """Представление для JSON-колонки (без пустых полей)."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRange":
        return cls(
            offset=int(data["offset"]),
            length=int(data["length"]),
            type=str(data.get("type") or EntityType.UNKNOWN.value),
            url=data.get("url"),
            language=data.get("language"),
        )


def coerce_entities(entities: Optional[Iterable[Any]]) -> List[EntityRange]:
    """Привести список entity (dict или EntityRange) к EntityRange."""
    if not entities:
        return []
    return [e if isinstance(e, EntityRange) else EntityRange.from_dict(e) for e in entities]


# Типы Pyrogram (MessageEntityType.name) -> наши типы
_PYROGRAM_TYPES = {
    "BOLD": EntityType.BOLD,
    "ITALIC": EntityType.ITALIC,
    "CODE": EntityType.CODE,
    "PRE": EntityType.PRE,
    "TEXT_LINK": EntityType.TEXT_URL,
    "URL": EntityType.URL,
    "STRIKETHROUGH": EntityType.STRIKETHROUGH,
    "UNDERLINE": EntityType.UNDERLINE,
    "BLOCKQUOTE": EntityType.BLOCKQUOTE,
    "EXPANDABLE_BLOCKQUOTE": EntityType.BLOCKQUOTE,
    "SPOILER": EntityType.SPOILER,
    "MENTION": EntityType.MENTION,
    "HASHTAG": EntityType.HASHTAG,
    "BOT_COMMAND": EntityType.BOT_COMMAND,
}


def parse_pyrogram_entities(entities: Optional[Sequence[Any]]) -> List[EntityRange]:
    """
    Извлечь EntityRange из entities сообщения Pyrogram.

    Args:
        entities: ``message.entities`` или ``message.caption_entities``

    Returns:
        Список EntityRange; незнакомые типы становятся ``unknown``
    """
    if not entities:
        return []

    result = []
    for entity in entities:
        type_name = getattr(entity.type, "name", str(entity.type)).upper()
        entity_type = _PYROGRAM_TYPES.get(type_name, EntityType.UNKNOWN)
        url = None
        language = None
        if entity_type is EntityType.TEXT_URL:
            url = getattr(entity, "url", None)
        elif entity_type is EntityType.PRE:
            language = getattr(entity, "language", None) or ""
        result.append(EntityRange(
            offset=entity.offset,
            length=entity.length,
            type=entity_type.value,
            url=url,
            language=language,
        ))
    return result


# ---------------------------------------------------------------------------
# UTF-16
# ---------------------------------------------------------------------------

def _is_high_surrogate(ch: str) -> bool:
    return len(ch) == 1 and 0xD800 <= ord(ch) <= 0xDBFF


def _is_low_surrogate(ch: str) -> bool:
    return len(ch) == 1 and 0xDC00 <= ord(ch) <= 0xDFFF


def _utf16_units(text: str) -> List[str]:
    """
    Разбить строку на UTF-16 code units.

    Символ вне BMP занимает две позиции: в первой лежит сам символ,
    вторая пустая. Так индексы совпадают с offset из Telegram, а склейка
    списка возвращает исходную строку.
    """
    units: List[str] = []
    for ch in text:
        units.append(ch)
        if ord(ch) > 0xFFFF:
            units.append("")
    return units


def _pair_tails(units: List[str]) -> set:
    """Позиции вторых половин суррогатных пар (на них не может быть границы)."""
    tails = set()
    for i, unit in enumerate(units):
        if unit and ord(unit[0]) > 0xFFFF:
            tails.add(i + 1)
        elif _is_high_surrogate(unit) and i + 1 < len(units) and _is_low_surrogate(units[i + 1]):
            tails.add(i + 1)
    return tails


def utf16_length(text: str) -> int:
    """Длина строки в UTF-16 code units."""
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


# ---------------------------------------------------------------------------
# Entities -> Markdown
# ---------------------------------------------------------------------------

def strip_markdown_artifacts(text: str) -> str:
    """
    Удалить голые маркеры ``**``, ``__`` и ``~~``.

    У старых постов в original_text сохранен текст с маркерами, а entities
    посчитаны по чистому тексту. Удаление маркеров возвращает совпадение
    текста и offset.
    """
    return text.replace("**", "").replace("__", "").replace("~~", "")


def _escape_markdown_char(ch: str) -> str:
    return "\\" + ch if ch and ch in MD_CHARS else ch


def _markdown_replacement(entity: EntityRange, content: str) -> str:
    entity_type = entity.type
    if entity_type == EntityType.BOLD.value:
        return f"**{content}**"
    if entity_type == EntityType.ITALIC.value:
        return f"*{content}*"
    if entity_type == EntityType.UNDERLINE.value:
        return f"__{content}__"
    if entity_type == EntityType.STRIKETHROUGH.value:
        return f"~~{content}~~"
    if entity_type == EntityType.CODE.value:
        return f"`{content}`"
    if entity_type == EntityType.PRE.value:
        return f"```{entity.language or ''}\n{content}\n```"
    if entity_type == EntityType.TEXT_URL.value:
        return f"[{content}]({entity.url})" if entity.url else content
    if entity_type == EntityType.BLOCKQUOTE.value:
        return "\n".join(f"> {line}" for line in content.split("\n"))
    if entity_type == EntityType.SPOILER.value:
        return f"||{content}||"
    # url, mention, hashtag, botCommand, unknown
    return content


def entities_to_markdown(text: str, entities: Optional[Iterable[Any]]) -> str:
    """
    Конвертировать plain text + entities в Markdown.

    Символы вне entity экранируются, чтобы литеральные ``*``, ``_``, ``~``
    не стали разметкой. Entity применяются с конца текста к началу
    (по убыванию offset); рендер entity складывается в ячейку его первой
    позиции, поэтому offset еще не примененных entity не сдвигаются.
    При равном offset первым намеренно применяется более короткий
    (внутренний) диапазон, то есть по возрастанию длины: внешний
    оборачивает уже готовую ячейку внутреннего, и вложенность остается
    правильной (``***Hello* world**``). Сплайс по убыванию длины дал бы
    перекрещенные маркеры.

    Args:
        text: Чистый текст сообщения
        entities: EntityRange или их dict-представления

    Returns:
        Текст с Markdown разметкой
    """
    units = _utf16_units(text or "")
    ranges = coerce_entities(entities)
    if not ranges:
        return "".join(_escape_markdown_char(u) for u in units)

    total = len(units)
    valid = []
    for entity in ranges:
        if entity.length <= 0 or entity.offset < 0 or entity.end > total:
            logger.debug("entity_out_of_bounds", type=entity.type, offset=entity.offset, length=entity.length)
            continue
        valid.append(entity)

    covered = set()
    for entity in valid:
        covered.update(range(entity.offset, entity.end))

    result = [u if i in covered else _escape_markdown_char(u) for i, u in enumerate(units)]

    for entity in sorted(valid, key=lambda e: (-e.offset, e.length)):
        content = "".join(result[entity.offset:entity.end])
        result[entity.offset] = _markdown_replacement(entity, content)
        for i in range(entity.offset + 1, entity.end):
            result[i] = ""

    return "".join(result)


# ---------------------------------------------------------------------------
# Entities -> Telegram HTML
# ---------------------------------------------------------------------------

def escape_html(text: str) -> str:
    """Экранировать &, < и > (кавычки не трогаем)."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _entity_tags(entity: EntityRange) -> Tuple[str, str]:
    entity_type = entity.type
    if entity_type == EntityType.BOLD.value:
        return "<b>", "</b>"
    if entity_type == EntityType.ITALIC.value:
        return "<i>", "</i>"
    if entity_type == EntityType.CODE.value:
        return "<code>", "</code>"
    if entity_type == EntityType.PRE.value:
        if entity.language:
            return f'<pre><code class="language-{html.escape(entity.language)}">', "</code></pre>"
        return "<pre>", "</pre>"
    if entity_type == EntityType.TEXT_URL.value:
        if not entity.url:
            return "", ""
        return f'<a href="{html.escape(entity.url)}">', "</a>"
    if entity_type == EntityType.STRIKETHROUGH.value:
        return "<s>", "</s>"
    if entity_type == EntityType.UNDERLINE.value:
        return "<u>", "</u>"
    if entity_type == EntityType.BLOCKQUOTE.value:
        return "<blockquote>", "</blockquote>"
    if entity_type == EntityType.SPOILER.value:
        return "<spoiler>", "</spoiler>"
    return "", ""


@dataclass(eq=False)
class _TagEvent:
    open_tag: str
    close_tag: str
    length: int
    end: int


def _close_tags_at(closing: List[_TagEvent], stack: List[_TagEvent], parts: List[str]) -> None:
    """
    Закрыть теги из ``closing`` (все заканчиваются в текущей позиции).

    Закрываем от вершины стека вниз до самого глубокого заканчивающегося
    тега. Теги, которые при этом закрылись, но продолжаются дальше
    (частичное пересечение), открываются заново в прежнем порядке.
    """
    ending = [i for i, tag in enumerate(stack) if tag in closing]
    if not ending:
        return
    lowest = ending[0]
    popped = stack[lowest:]
    del stack[lowest:]
    for tag in reversed(popped):
        parts.append(tag.close_tag)
    for tag in popped:
        if tag not in closing:
            parts.append(tag.open_tag)
            stack.append(tag)


def entities_to_html(text: str, entities: Optional[Iterable[Any]]) -> str:
    """
    Конвертировать plain text + entities в Telegram HTML.

    Теги собираются в карты open/close по UTF-16 позиции. В одной позиции
    открывающие теги идут от длинного к короткому (внешний первым),
    закрывающие от внутреннего к внешнему. Частично пересекающиеся
    диапазоны режутся на сегменты, так что результат всегда правильно
    вложен: ``<b>ab<i>cd</i></b><i>ef</i>``.

    Суррогатная пара выводится целиком. Граница entity внутри пары
    (битые данные) сдвигается наружу пары, а не ломает рендер.
    """
    text = text or ""
    ranges = coerce_entities(entities)
    if not ranges:
        return escape_html(text)

    units = _utf16_units(text)
    total = len(units)
    tails = _pair_tails(units)

    opens: Dict[int, List[_TagEvent]] = {}
    closes: Dict[int, List[_TagEvent]] = {}

    for entity in ranges:
        open_tag, close_tag = _entity_tags(entity)
        if not open_tag or entity.length <= 0:
            continue
        start = entity.offset - 1 if entity.offset in tails else entity.offset
        end = entity.end + 1 if entity.end in tails else entity.end
        start = max(start, 0)
        end = min(end, total)
        if start >= end:
            continue
        event = _TagEvent(open_tag, close_tag, entity.length, end)
        opens.setdefault(start, []).append(event)
        closes.setdefault(end, []).append(event)

    for events in opens.values():
        events.sort(key=lambda e: -e.length)

    parts: List[str] = []
    stack: List[_TagEvent] = []
    i = 0
    while True:
        if i in closes:
            _close_tags_at(closes[i], stack, parts)
        if i in opens:
            for event in opens[i]:
                parts.append(event.open_tag)
                stack.append(event)
        if i >= total:
            break

        unit = units[i]
        if i + 1 in tails:
            # суррогатная пара: обе половины одним куском
            parts.append(unit + units[i + 1])
            i += 2
        else:
            parts.append(escape_html(unit))
            i += 1

    return "".join(parts)


# ---------------------------------------------------------------------------
# Markdown -> Telegram HTML
# ---------------------------------------------------------------------------

# Плейсхолдеры для экранированных символов (Private Use Area)
ESC_MAP = [
    (re.compile(r"\\\*"), "\uE001", "*"),
    (re.compile(r"\\_"), "\uE002", "_"),
    (re.compile(r"\\~"), "\uE003", "~"),
    (re.compile(r"\\`"), "\uE004", "`"),
    (re.compile(r"\\\|"), "\uE005", "|"),
]

_CODE_BLOCK_RE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_STRIKE_RE = re.compile(r"~~(.+?)~~")
_UNDERLINE_RE = re.compile(r"__(.+?)__")
_ITALIC_RE = re.compile(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BLOCKQUOTE_RE = re.compile(r"^> ?(.*)$", re.MULTILINE)
_SPOILER_RE = re.compile(r"\|\|(.+?)\|\|")


def _render_code_block(match: "re.Match") -> str:
    language, code = match.group(1), escape_html(match.group(2).rstrip())
    if language:
        return f'<pre><code class="language-{language}">{code}</code></pre>'
    return f"<pre>{code}</pre>"


def markdown_to_html(markdown: str) -> str:
    """
    Конвертировать Markdown обратно в Telegram HTML для публикации.

    Порядок замен фиксирован: код, жирный, зачеркнутый, подчеркнутый,
    курсив (последним, с lookaround, чтобы не цеплять ``**``), ссылки,
    цитаты, спойлеры. Перестановка ломает вложенные случаи.
    """
    result = markdown or ""

    for pattern, placeholder, _ in ESC_MAP:
        result = pattern.sub(placeholder, result)

    result = _CODE_BLOCK_RE.sub(_render_code_block, result)
    result = _INLINE_CODE_RE.sub(lambda m: f"<code>{escape_html(m.group(1))}</code>", result)
    result = _BOLD_RE.sub(r"<b>\1</b>", result)
    result = _STRIKE_RE.sub(r"<s>\1</s>", result)
    result = _UNDERLINE_RE.sub(r"<u>\1</u>", result)
    result = _ITALIC_RE.sub(r"<i>\1</i>", result)
    result = _LINK_RE.sub(r'<a href="\2">\1</a>', result)

    result = _BLOCKQUOTE_RE.sub(r"<blockquote>\1</blockquote>", result)
    result = result.replace("</blockquote>\n<blockquote>", "\n")

    result = _SPOILER_RE.sub(r"<spoiler>\1</spoiler>", result)

    for _, placeholder, literal in ESC_MAP:
        result = result.replace(placeholder, literal)

    return result


# ---------------------------------------------------------------------------
# Старые битые переводы
# ---------------------------------------------------------------------------

_HTML_TAG_RE = re.compile(r"<[a-z][^>]*>", re.IGNORECASE)
_MD_MARKER_RE = re.compile(r"\*\*|__|~~")
_SPLIT_WORD_TAG_RE = re.compile(r"</[a-z]+>\S+<[a-z]")
_ANY_TAG_RE = re.compile(r"<[^>]+>")


def is_broken_html(text: str) -> bool:
    """
    Эвристика для старых переводов, где HTML-теги и Markdown-маркеры
    перемешаны (``<b>**text</b>**``).

    Такие тексты появились, когда в original_text сохранялся текст с
    маркерами, а entities считались по чистому тексту. Это не парсер:
    True, если есть и теги, и маркеры, или если закрывающий тег вплотную
    примыкает к слову, за которым сразу открывается новый тег.

    Теги сравниваются в нижнем регистре, как их выдает ``entities_to_html``.
    Вторая проверка срабатывает и на корректный HTML, который
    ``entities_to_html`` строит для частично пересекающихся диапазонов
    (``<b>abcde<i>fghij</i></b><i>klmno</i>``): перевод, сохранивший такую
    разметку, будет опубликован чистым текстом.
    """
    if not text:
        return False
    if _HTML_TAG_RE.search(text) and _MD_MARKER_RE.search(text):
        return True
    return bool(_SPLIT_WORD_TAG_RE.search(text))


def strip_html_tags(text: str) -> str:
    """Удалить все теги и раскрыть &amp;, &lt;, &gt;."""
    plain = _ANY_TAG_RE.sub("", text or "")
    return plain.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")
