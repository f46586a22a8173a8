from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

Primitive = Union[str, int, float, bool, None]

SectionType = Literal[
    "hero",
    "features",
    "services",
    "pricing",
    "testimonials",
    "gallery",
    "team",
    "stats",
    "booking",
    "contact",
    "cta",
    "custom",
]

SECTION_TYPES: tuple[str, ...] = (
    "hero",
    "features",
    "services",
    "pricing",
    "testimonials",
    "gallery",
    "team",
    "stats",
    "booking",
    "contact",
    "cta",
    "custom",
)


class ThemeMode(str, Enum):
    light = "light"
    dark = "dark"
    quantum = "quantum"


class Theme(BaseModel):
    primary: str = "#3b82f6"
    secondary: str = "#a855f7"
    accent: str = "#3b82f6"
    backgroundColor: str = "#ffffff"
    textColor: str = "#0f172a"
    fontFamily: str = "Inter"
    mode: ThemeMode = ThemeMode.light


class NavigationLink(BaseModel):
    label: str
    href: str


class Navigation(BaseModel):
    logo: Optional[str] = None
    links: list[NavigationLink] = Field(default_factory=list)


class Section(BaseModel):
    id: str
    type: SectionType
    content: dict[str, Primitive] = Field(default_factory=dict)
    styles: dict[str, Primitive] = Field(default_factory=dict)


class Page(BaseModel):
    slug: str
    title: str = ""
    layout: list[Section] = Field(default_factory=list)


class Blueprint(BaseModel):
    """
    Root document describing a generated website.

    Pages are keyed by slug; `homeSlug` names the page served as the default. Section ids are
    unique across the whole document, not only within their page, so selection, diffing and
    asset association stay stable while the user edits.
    """

    id: Optional[str] = None
    name: str
    description: str = ""
    theme: Theme = Field(default_factory=Theme)
    navigation: Navigation = Field(default_factory=Navigation)
    pages: dict[str, Page]
    homeSlug: str = "index"
    metadata: dict[str, Any] = Field(default_factory=dict)
    updatedAt: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_structure(self) -> "Blueprint":
        if not self.pages:
            raise ValueError("Blueprint must contain at least one page")
        if self.homeSlug not in self.pages:
            raise ValueError(f"homeSlug '{self.homeSlug}' does not name a page")
        seen: set[str] = set()
        for slug, page in self.pages.items():
            if page.slug != slug:
                raise ValueError(f"Page keyed by '{slug}' declares slug '{page.slug}'")
            for section in page.layout:
                if section.id in seen:
                    raise ValueError(f"Duplicate section id '{section.id}'")
                seen.add(section.id)
        return self

    @property
    def home(self) -> Page:
        return self.pages[self.homeSlug]

    def iter_sections(self) -> Iterator[tuple[Page, Section]]:
        for page in self.pages.values():
            for section in page.layout:
                yield page, section

    def find_section(self, section_id: str) -> Optional[tuple[Page, int, Section]]:
        for page in self.pages.values():
            for idx, section in enumerate(page.layout):
                if section.id == section_id:
                    return page, idx, section
        return None

    def section_ids(self) -> set[str]:
        return {section.id for _, section in self.iter_sections()}


def clone_blueprint(blueprint: Blueprint) -> Blueprint:
    return blueprint.model_copy(deep=True)


def blueprint_payload(blueprint: Blueprint) -> dict[str, Any]:
    return blueprint.model_dump(mode="json")


def same_content(left: Optional[Blueprint], right: Optional[Blueprint]) -> bool:
    """Structural equality that ignores the last-modified stamp."""

    if left is None or right is None:
        return left is right
    return left.model_dump(mode="json", exclude={"updatedAt"}) == right.model_dump(
        mode="json", exclude={"updatedAt"}
    )
