from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel

from blueprint_studio.editor import operations as ops
from blueprint_studio.schemas.blueprint import Blueprint, Section, ThemeMode, clone_blueprint

PatchOperationType = Literal[
    "theme.color",
    "theme.mode",
    "theme.font",
    "content.replace",
    "section.move",
    "section.place",
    "section.swap",
    "section.add",
    "section.remove",
    "section.style.backgroundColor",
    "site.rename",
]


class PatchOperation(BaseModel):
    type: PatchOperationType
    field: Optional[str] = None
    value: Optional[str] = None
    sectionType: Optional[str] = None
    targetType: Optional[str] = None


@dataclass(frozen=True)
class PatchResult:
    handled: bool
    document: Optional[Blueprint] = None
    ops_applied: int = 0
    operations: tuple[PatchOperation, ...] = field(default_factory=tuple)


_QUOTES = "\"'“”‘’`"
_COLOR_WORD = r"#[0-9a-f]{6}\b|#[0-9a-f]{3}\b|\b(?:" + "|".join(ops.NAMED_COLORS) + r")\b"
_COLOR_RE = re.compile(_COLOR_WORD, re.IGNORECASE)

_THEME_TARGETS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:primary|main|brand)\b"), "primary"),
    (re.compile(r"\bsecondary\b"), "secondary"),
    (re.compile(r"\baccent\b"), "accent"),
    (re.compile(r"\b(?:background|bg)\b"), "backgroundColor"),
    (re.compile(r"\b(?:text|font) colou?r\b"), "textColor"),
)

_RENAME_RE = re.compile(
    r"^(?:rename|call) (?:the )?(?:site|website|business|store|brand) (?:to|as) (?P<value>.+)$", re.IGNORECASE
)
_WHOLE_SITE_COLOR_RE = re.compile(
    r"^(?:make|turn|paint|change|set|color|colour) (?:it|everything|the site|the website|the page|the theme|the colou?rs?)"
    r"(?: to)? (?:more )?(?P<color>#?[a-z0-9]+)$",
    re.IGNORECASE,
)
_SECTION_BG_RE = re.compile(
    r"(?:the )?(?P<stype>[a-z][a-z ]*?) section(?:'s)? (?:background|bg)\b", re.IGNORECASE
)
_MODE_RE = re.compile(
    r"\b(?P<mode>dark|light|quantum) (?:mode|theme)\b|^(?:make|turn) (?:it|everything|the site) (?P<bare>dark|light)$",
    re.IGNORECASE,
)
_FONT_RE = re.compile(
    r"^(?:change|set|switch|update)(?: the)? (?:font|typeface|typography)(?: family)? (?:to )?(?P<font>.+)$"
    r"|^use (?:the )?(?P<font2>.+?) font$",
    re.IGNORECASE,
)
_CONTENT_RE = re.compile(
    r"^(?:change|set|update|replace|make) (?:the )?(?P<target>[a-z][a-z ]*?) (?:to|as|into|=|:) (?P<value>.+)$",
    re.IGNORECASE,
)
_MOVE_RE = re.compile(
    r"^move (?:the )?(?P<stype>.+?) section (?P<dir>up|down|to the top|to the bottom|first|last)$", re.IGNORECASE
)
_PLACE_RE = re.compile(
    r"^move (?:the )?(?P<a>.+?)(?: section)? (?P<rel>above|below|before|after) (?:the )?(?P<b>.+?)(?: section)?$",
    re.IGNORECASE,
)
_SWAP_RE = re.compile(
    r"^swap (?:the )?(?P<a>.+?)(?: section)? (?:and|with) (?:the )?(?P<b>.+?)(?: section)?$", re.IGNORECASE
)
_ADD_RE = re.compile(
    r"^add (?:a |an |another |new )*(?P<stype>.+?) section(?: (?:called|titled|named) (?P<title>.+))?$",
    re.IGNORECASE,
)
_REMOVE_RE = re.compile(r"^(?:remove|delete|drop) (?:the )?(?P<stype>.+?) section$", re.IGNORECASE)

_PRONOUN_TARGET_RE = re.compile(r"\b(?:that|this|its?)(?: section(?:'s)?)? (?:background|bg|bigger|smaller|larger)\b")

_NON_CONTENT_FIELDS = {"color", "colour", "colors", "font", "background", "bg", "theme", "mode", "it", "site"}
_HERO_FIELDS = {"headline", "subheadline"}


def _clean_value(raw: str) -> str:
    value = raw.strip().rstrip(".!").strip()
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] in _QUOTES:
        value = value[1:-1]
    return value.strip()


def _normalize(command: str) -> str:
    text = re.sub(r"\s+", " ", command.strip())
    text = re.sub(r"^(?:please|can you|could you|now)\s+", "", text, flags=re.IGNORECASE)
    return text.rstrip(".!? ") if not text.endswith(("'", '"', "”", "’")) else text


def build_patch_operations(command: str) -> list[PatchOperation]:
    """Translate a free-text instruction into the fixed patch grammar. Unrecognized text yields []."""

    text = _normalize(command)
    lower = text.lower()
    if not text:
        return []

    match = _RENAME_RE.match(text)
    if match:
        return [PatchOperation(type="site.rename", value=_clean_value(match.group("value")))]

    match = _MOVE_RE.match(text)
    if match:
        return [
            PatchOperation(
                type="section.move",
                sectionType=match.group("stype").strip().lower(),
                value=match.group("dir").lower(),
            )
        ]
    match = _PLACE_RE.match(text)
    if match:
        return [
            PatchOperation(
                type="section.place",
                sectionType=match.group("a").strip().lower(),
                targetType=match.group("b").strip().lower(),
                value=match.group("rel").lower(),
            )
        ]
    match = _SWAP_RE.match(text)
    if match:
        return [
            PatchOperation(
                type="section.swap",
                sectionType=match.group("a").strip().lower(),
                targetType=match.group("b").strip().lower(),
            )
        ]
    match = _ADD_RE.match(text)
    if match:
        title = match.group("title")
        return [
            PatchOperation(
                type="section.add",
                sectionType=match.group("stype").strip().lower(),
                value=_clean_value(title) if title else None,
            )
        ]
    match = _REMOVE_RE.match(text)
    if match:
        return [PatchOperation(type="section.remove", sectionType=match.group("stype").strip().lower())]

    # Pronoun-scoped edits ("make that background #000") belong to the refinement tier.
    if _PRONOUN_TARGET_RE.search(lower):
        return []

    match = _FONT_RE.match(text)
    if match and "colo" not in lower:
        font = match.group("font") or match.group("font2") or ""
        return [PatchOperation(type="theme.font", value=_clean_value(font))]

    result: list[PatchOperation] = []
    color_match = _COLOR_RE.search(text)
    color = ops.resolve_color(color_match.group(0)) if color_match else None

    mode_match = _MODE_RE.search(text)
    if mode_match and not color:
        mode = (mode_match.group("mode") or mode_match.group("bare")).lower()
        return [PatchOperation(type="theme.mode", value=mode)]

    if color:
        section_bg = _SECTION_BG_RE.search(text)
        if section_bg:
            return [
                PatchOperation(
                    type="section.style.backgroundColor",
                    sectionType=section_bg.group("stype").strip().lower(),
                    value=color,
                )
            ]
        for pattern, theme_field in _THEME_TARGETS:
            if pattern.search(lower):
                result.append(PatchOperation(type="theme.color", field=theme_field, value=color))
        if result:
            return result
        whole = _WHOLE_SITE_COLOR_RE.match(text)
        if whole and ops.resolve_color(whole.group("color")) == color:
            return [
                PatchOperation(type="theme.color", field="primary", value=color),
                PatchOperation(type="theme.color", field="accent", value=color),
            ]

    match = _CONTENT_RE.match(text)
    if match:
        value = match.group("value").strip()
        words = [w for w in match.group("target").lower().split() if w not in ("text", "section", "copy")]
        if 1 <= len(words) <= 4 and words[-1] not in _NON_CONTENT_FIELDS and not _COLOR_RE.fullmatch(value):
            return [
                PatchOperation(
                    type="content.replace",
                    field=words[-1],
                    sectionType=" ".join(words[:-1]) or None,
                    value=_clean_value(value),
                )
            ]
    return []


class CommandPatcher:
    """
    Deterministic first tier: applies instructions that match a fixed grammar without any I/O.

    An instruction that parses but cannot land on the current document (e.g. a headline change
    on a document without a hero section) reports `handled=False` so the next tier gets a chance.
    """

    name = "patcher"

    def apply(self, document: Blueprint, command: str) -> PatchResult:
        operations = build_patch_operations(command)
        if not operations:
            return PatchResult(handled=False)

        working = clone_blueprint(document)
        changed = 0
        for op in operations:
            outcome = self._apply_operation(working, op)
            if outcome is None:
                return PatchResult(handled=False, operations=tuple(operations))
            if outcome:
                changed += 1
        # Matched but already satisfied: let the next tier try.
        if not changed:
            return PatchResult(handled=False, operations=tuple(operations))
        return PatchResult(handled=True, document=working, ops_applied=changed, operations=tuple(operations))

    def _apply_operation(self, doc: Blueprint, op: PatchOperation) -> Optional[bool]:
        """Returns True when changed, False when already satisfied, None when the target is missing."""

        if op.type == "site.rename":
            if not op.value:
                return None
            changed = doc.name != op.value
            doc.name = op.value
            return changed
        if op.type == "theme.color":
            if not op.field or not op.value or not ops.HEX_COLOR_RE.match(op.value):
                return None
            return ops.set_theme_color(doc, op.field, op.value)
        if op.type == "theme.mode":
            return ops.apply_mode(doc, ThemeMode(op.value))
        if op.type == "theme.font":
            if not op.value:
                return None
            return ops.set_font(doc, op.value)
        if op.type == "content.replace":
            return self._replace_content(doc, op)
        if op.type == "section.style.backgroundColor":
            section = self._section_for(doc, op.sectionType)
            if section is None or not op.value:
                return None
            return ops.set_style(section, "backgroundColor", op.value)
        if op.type == "section.move":
            section = self._section_for(doc, op.sectionType)
            if section is None:
                return None
            page, idx, _ = doc.find_section(section.id)
            targets = {
                "up": idx - 1,
                "down": idx + 1,
                "to the top": 0,
                "first": 0,
                "to the bottom": len(page.layout) - 1,
                "last": len(page.layout) - 1,
            }
            return ops.move_section(doc, section.id, targets[op.value])
        if op.type == "section.place":
            section = self._section_for(doc, op.sectionType)
            anchor = self._section_for(doc, op.targetType)
            if section is None or anchor is None or section.id == anchor.id:
                return None
            page, current_idx, _ = doc.find_section(section.id)
            anchor_page, anchor_idx, _ = doc.find_section(anchor.id)
            if page is not anchor_page:
                return None
            if current_idx < anchor_idx:
                anchor_idx -= 1
            target = anchor_idx if op.value in ("above", "before") else anchor_idx + 1
            return ops.move_section(doc, section.id, target)
        if op.type == "section.swap":
            first = self._section_for(doc, op.sectionType)
            second = self._section_for(doc, op.targetType)
            if first is None or second is None or first.id == second.id:
                return None
            return ops.swap_sections(doc, first.id, second.id)
        if op.type == "section.add":
            raw = op.sectionType or ""
            section_type = ops.section_type_from_phrase(raw)
            title = op.value or (None if section_type and section_type != "custom" else raw.title())
            ops.add_section(doc, section_type or "custom", title=title)
            return True
        if op.type == "section.remove":
            section = self._section_for(doc, op.sectionType)
            if section is None:
                return None
            return ops.remove_section(doc, section.id)
        return None

    def _section_for(self, doc: Blueprint, raw_type: Optional[str]) -> Optional[Section]:
        section_type = ops.section_type_from_phrase(raw_type or "")
        if section_type is None:
            return None
        return ops.find_section_by_type(doc, section_type)

    def _replace_content(self, doc: Blueprint, op: PatchOperation) -> Optional[bool]:
        if not op.field or op.value is None:
            return None
        if op.sectionType:
            section = self._section_for(doc, op.sectionType)
        elif op.field in _HERO_FIELDS:
            section = ops.find_section_by_type(doc, "hero")
        else:
            section = next((s for s in doc.home.layout if _content_key(s, op.field)), None)
        key = _content_key(section, op.field) if section is not None else None
        if key is None:
            return None
        return ops.set_content_field(section, key, op.value)


def _content_key(section: Section, field_name: str) -> Optional[str]:
    """Existing content key matching `field_name` case-insensitively."""
    for key in section.content:
        if key.lower() == field_name:
            return key
    return None
