from __future__ import annotations

import re
import uuid
from typing import Optional

from blueprint_studio.schemas.blueprint import SECTION_TYPES, Blueprint, Page, Primitive, Section, ThemeMode

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

NAMED_COLORS: dict[str, str] = {
    "blue": "#2563eb",
    "navy": "#1e3a8a",
    "sky": "#0ea5e9",
    "teal": "#0d9488",
    "cyan": "#06b6d4",
    "green": "#16a34a",
    "emerald": "#059669",
    "lime": "#65a30d",
    "yellow": "#eab308",
    "gold": "#ca8a04",
    "orange": "#ea580c",
    "red": "#dc2626",
    "crimson": "#be123c",
    "pink": "#db2777",
    "rose": "#e11d48",
    "purple": "#9333ea",
    "violet": "#7c3aed",
    "indigo": "#4f46e5",
    "brown": "#92400e",
    "gray": "#6b7280",
    "grey": "#6b7280",
    "black": "#000000",
    "white": "#ffffff",
}

THEME_COLOR_FIELDS = ("primary", "secondary", "accent", "backgroundColor", "textColor")

MODE_PRESETS: dict[ThemeMode, dict[str, str]] = {
    ThemeMode.dark: {"backgroundColor": "#0b1220", "textColor": "#f8fafc"},
    ThemeMode.light: {"backgroundColor": "#ffffff", "textColor": "#0f172a"},
    ThemeMode.quantum: {"backgroundColor": "#050014", "textColor": "#e0e7ff"},
}

SIZE_STEPS: tuple[str, ...] = ("xs", "sm", "md", "lg", "xl", "2xl")
DEFAULT_SIZE = "md"


def normalize_section_type(value: str) -> Optional[str]:
    """Map free text like 'Testimonial' or 'call to action' onto the closed section type set."""

    cleaned = re.sub(r"[\s_-]+", " ", (value or "").strip().lower())
    aliases = {
        "call to action": "cta",
        "banner": "hero",
        "header": "hero",
        "feature": "features",
        "service": "services",
        "price": "pricing",
        "prices": "pricing",
        "plans": "pricing",
        "testimonial": "testimonials",
        "reviews": "testimonials",
        "review": "testimonials",
        "photos": "gallery",
        "images": "gallery",
        "portfolio": "gallery",
        "stat": "stats",
        "numbers": "stats",
        "appointments": "booking",
        "contact us": "contact",
        "contact form": "contact",
        "about": "custom",
    }
    if cleaned in SECTION_TYPES:
        return cleaned
    return aliases.get(cleaned)


def section_type_from_phrase(phrase: str) -> Optional[str]:
    """Resolve the trailing words of a phrase like 'make the pricing' onto a section type."""

    words = re.findall(r"[a-z0-9]+", (phrase or "").lower())
    while words and words[-1] in ("section", "sections"):
        words.pop()
    for size in (3, 2, 1):
        if len(words) >= size:
            section_type = normalize_section_type(" ".join(words[-size:]))
            if section_type:
                return section_type
    return None


def resolve_color(token: str) -> Optional[str]:
    value = (token or "").strip().lower()
    if HEX_COLOR_RE.match(value):
        return value
    return NAMED_COLORS.get(value)


def new_section_id(section_type: str) -> str:
    return f"{section_type}-{uuid.uuid4().hex[:8]}"


def page_for(blueprint: Blueprint, page_slug: Optional[str] = None) -> Page:
    return blueprint.pages[page_slug] if page_slug else blueprint.home


def find_section_by_type(blueprint: Blueprint, section_type: str, *, page_slug: Optional[str] = None) -> Optional[Section]:
    """First section of `section_type`, preferring the given page (home by default) before the rest."""

    preferred = page_for(blueprint, page_slug)
    for section in preferred.layout:
        if section.type == section_type:
            return section
    for _, section in blueprint.iter_sections():
        if section.type == section_type:
            return section
    return None


def set_theme_color(blueprint: Blueprint, field: str, color: str) -> bool:
    if field not in THEME_COLOR_FIELDS or not HEX_COLOR_RE.match(color):
        return False
    if getattr(blueprint.theme, field) == color:
        return False
    setattr(blueprint.theme, field, color)
    return True


def apply_mode(blueprint: Blueprint, mode: ThemeMode) -> bool:
    changed = blueprint.theme.mode != mode
    blueprint.theme.mode = mode
    for field, color in MODE_PRESETS[mode].items():
        changed = set_theme_color(blueprint, field, color) or changed
    return changed


def set_font(blueprint: Blueprint, font_family: str) -> bool:
    font_family = font_family.strip()
    if not font_family or blueprint.theme.fontFamily == font_family:
        return False
    blueprint.theme.fontFamily = font_family
    return True


def set_content_field(section: Section, key: str, value: Primitive) -> bool:
    """Replace an existing content field. Unknown keys are left alone so a typo never grows the schema."""

    if key not in section.content:
        return False
    if section.content[key] == value:
        return False
    section.content[key] = value
    return True


def set_style(section: Section, key: str, value: Primitive) -> bool:
    if section.styles.get(key) == value:
        return False
    section.styles[key] = value
    return True


def step_size(section: Section, delta: int) -> bool:
    current = section.styles.get("size")
    idx = SIZE_STEPS.index(current) if current in SIZE_STEPS else SIZE_STEPS.index(DEFAULT_SIZE)
    target = max(0, min(len(SIZE_STEPS) - 1, idx + delta))
    return set_style(section, "size", SIZE_STEPS[target])


def move_section(blueprint: Blueprint, section_id: str, new_index: int) -> bool:
    located = blueprint.find_section(section_id)
    if located is None:
        return False
    page, idx, section = located
    target = max(0, min(len(page.layout) - 1, new_index))
    if target == idx:
        return False
    page.layout.pop(idx)
    page.layout.insert(target, section)
    return True


def swap_sections(blueprint: Blueprint, first_id: str, second_id: str) -> bool:
    first = blueprint.find_section(first_id)
    second = blueprint.find_section(second_id)
    if first is None or second is None or first_id == second_id:
        return False
    page_a, idx_a, section_a = first
    page_b, idx_b, section_b = second
    page_a.layout[idx_a] = section_b
    page_b.layout[idx_b] = section_a
    return True


def add_section(
    blueprint: Blueprint,
    section_type: str,
    *,
    title: Optional[str] = None,
    page_slug: Optional[str] = None,
    index: Optional[int] = None,
) -> Section:
    page = page_for(blueprint, page_slug)
    existing = blueprint.section_ids()
    section_id = new_section_id(section_type)
    while section_id in existing:
        section_id = new_section_id(section_type)
    heading = title or section_type.replace("_", " ").title()
    section = Section(
        id=section_id,
        type=section_type,
        content={"title": heading, "description": "", "cta": "Learn more"},
        styles={"backgroundColor": blueprint.theme.backgroundColor, "padding": "80px 24px"},
    )
    if index is None:
        page.layout.append(section)
    else:
        page.layout.insert(max(0, min(len(page.layout), index)), section)
    return section


def remove_section(blueprint: Blueprint, section_id: str) -> bool:
    located = blueprint.find_section(section_id)
    if located is None:
        return False
    page, idx, _ = located
    page.layout.pop(idx)
    return True
