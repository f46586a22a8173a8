from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Optional

from blueprint_studio.editor import operations as ops
from blueprint_studio.schemas.blueprint import Blueprint, Section, clone_blueprint, same_content
from blueprint_studio.schemas.editor import Declined, DeclineReason, Resolved, TierOutcome

logger = logging.getLogger(__name__)

_ORDINALS = {
    "first": 0,
    "1st": 0,
    "second": 1,
    "2nd": 1,
    "third": 2,
    "3rd": 2,
    "fourth": 3,
    "4th": 3,
    "fifth": 4,
    "5th": 4,
    "last": -1,
}

_REVERT_RE = re.compile(
    r"^(?:(?:change|put|set|turn|switch) (?:it|that|this|everything)(?: all)? back(?: to how it was)?"
    r"|revert(?: it| that| this| the last change)?"
    r"|undo (?:it|that|this|the last change)"
    r"|go back)$"
)
_TARGETED_REVERT_RE = re.compile(
    r"^(?:undo|revert) the (?P<target>[a-z ]+?) changes?$|^(?:change|put|set|switch) the (?P<target2>[a-z ]+?) back$"
)
_ORDINAL_RE = re.compile(
    r"\b(?:the )?(?P<ord>" + "|".join(_ORDINALS) + r")(?: one| section| block)?\b"
)
_PRONOUN_RE = re.compile(r"\b(?:it|that|this|that section|this section)\b")
_SAME_FOR_RE = re.compile(r"^do (?:the same|that|this)(?: thing)? (?:for|to|on) (?:the )?(?P<target>.+)$")
_AGAIN_RE = re.compile(r"^(?:(?:do (?:it|that) )?again|once more|one more time|more)$")
_BIGGER_RE = re.compile(r"\b(?:bigger|larger|taller|more prominent)\b")
_SMALLER_RE = re.compile(r"\b(?:smaller|shorter|more compact|less prominent)\b")
_HIDE_RE = re.compile(r"^(?:hide|conceal)\b")
_SHOW_RE = re.compile(r"^(?:show|unhide|reveal)\b")
_REMOVE_RE = re.compile(r"^(?:remove|delete|drop)\b")
_MOVE_RE = re.compile(r"^move\b.*\b(?P<dir>up|down)$")
_BACKGROUND_RE = re.compile(r"\b(?:background|bg)\b")
_COLOR_TOKEN_RE = re.compile(r"#[0-9a-f]{6}\b|#[0-9a-f]{3}\b|\b[a-z]+\b")

_THEME_COLOR_TARGETS = {"color", "colors", "colour", "colours", "palette", "theme", "mode"}
_FONT_TARGETS = {"font", "fonts", "typeface", "typography"}


@dataclass
class _Turn:
    instruction: str
    before: Blueprint
    after: Blueprint
    touched: tuple[str, ...]
    size_delta: int = 0


def _clean(text: str) -> str:
    lowered = re.sub(r"\s+", " ", (text or "").strip().lower())
    lowered = re.sub(r"^(?:please|can you|could you|now)\s+", "", lowered)
    return lowered.rstrip(".!? ")


def _find_color(text: str) -> Optional[str]:
    for token in _COLOR_TOKEN_RE.findall(text):
        color = ops.resolve_color(token)
        if color:
            return color
    return None


def _size_index(section: Section) -> int:
    size = section.styles.get("size")
    return ops.SIZE_STEPS.index(size) if size in ops.SIZE_STEPS else ops.SIZE_STEPS.index(ops.DEFAULT_SIZE)


class RefinementEngine:
    """
    Second tier: reinterprets follow-up instructions against what recently changed.

    The engine keeps the last `memory_size` resolved turns (instruction, document before and after,
    and the section ids the turn touched) and uses them to resolve reverts, ordinal references
    ("the second one"), pronouns ("make it bigger") and repetition ("do the same for pricing").
    Anything it cannot pin to a single concrete edit is declined as ambiguous.
    """

    name = "refinement"

    def __init__(self, *, memory_size: int = 5) -> None:
        if memory_size < 1:
            raise ValueError("Refinement memory size must be at least 1")
        self._turns: deque[_Turn] = deque(maxlen=memory_size)

    @property
    def recent_instructions(self) -> list[str]:
        return [turn.instruction for turn in self._turns]

    @property
    def last_touched(self) -> Optional[str]:
        for turn in reversed(self._turns):
            if turn.touched:
                return turn.touched[0]
        return None

    def observe(self, before: Blueprint, instruction: str, after: Blueprint) -> None:
        """Record a resolved instruction from any tier so later follow-ups can refer back to it."""

        touched = self._touched_sections(before, after, instruction)
        size_delta = 0
        for section_id in touched:
            old = before.find_section(section_id)
            new = after.find_section(section_id)
            if old is not None and new is not None:
                size_delta = _size_index(new[2]) - _size_index(old[2])
                if size_delta:
                    break
        self._turns.append(
            _Turn(
                instruction=instruction,
                before=clone_blueprint(before),
                after=clone_blueprint(after),
                touched=touched,
                size_delta=size_delta,
            )
        )
        logger.debug("refinement.observed", extra={"touched": list(touched), "memory": len(self._turns)})

    def resolve(self, document: Blueprint, instruction: str) -> TierOutcome:
        text = _clean(instruction)
        if not text:
            return self._decline("empty instruction")

        if _REVERT_RE.match(text):
            return self._revert_all(document)
        match = _TARGETED_REVERT_RE.match(text)
        if match:
            return self._revert_target(document, (match.group("target") or match.group("target2")).strip())
        match = _SAME_FOR_RE.match(text)
        if match:
            return self._repeat_for(document, match.group("target"))
        if _AGAIN_RE.match(text):
            return self._repeat_size(document)

        ordinal = _ORDINAL_RE.search(text)
        if ordinal:
            section = self._section_at(document, _ORDINALS[ordinal.group("ord")])
            if section is None:
                return self._decline(f"no {ordinal.group('ord')} section on the home page")
            return self._apply_action(document, section.id, text, label=f"the {ordinal.group('ord')} section")

        if _PRONOUN_RE.search(text):
            section_id = self.last_touched
            if section_id is None or document.find_section(section_id) is None:
                return self._decline("nothing recent to refer back to")
            return self._apply_action(document, section_id, text, label="that section")

        return self._decline("instruction does not refer to a recent change")

    def _apply_action(self, document: Blueprint, section_id: str, text: str, *, label: str) -> TierOutcome:
        working = clone_blueprint(document)
        _, idx, section = working.find_section(section_id)
        move = _MOVE_RE.match(text)
        if _BIGGER_RE.search(text):
            ops.step_size(section, 1)
            message = f"Made {label} bigger."
        elif _SMALLER_RE.search(text):
            ops.step_size(section, -1)
            message = f"Made {label} smaller."
        elif _HIDE_RE.match(text):
            ops.set_style(section, "hidden", True)
            message = f"Hid {label}."
        elif _SHOW_RE.match(text):
            ops.set_style(section, "hidden", False)
            message = f"Showing {label} again."
        elif _REMOVE_RE.match(text):
            ops.remove_section(working, section_id)
            message = f"Removed {label}."
        elif move:
            delta = -1 if move.group("dir") == "up" else 1
            ops.move_section(working, section_id, idx + delta)
            message = f"Moved {label} {'up' if delta < 0 else 'down'}."
        elif _BACKGROUND_RE.search(text) and _find_color(text):
            ops.set_style(section, "backgroundColor", _find_color(text))
            message = f"Changed the background of {label}."
        else:
            return self._decline(f"no supported action for {label}")
        if same_content(working, document):
            return self._decline(f"{label} already looks like that")
        return Resolved(tier=self.name, document=working, message=message)

    def _revert_all(self, document: Blueprint) -> TierOutcome:
        if not self._turns:
            return self._decline("nothing to revert")
        last = self._turns[-1]
        if not same_content(document, last.after):
            return self._decline("document moved since the last change")
        restored = clone_blueprint(last.before)
        restored.id = document.id
        return Resolved(tier=self.name, document=restored, message=f'Reverted "{last.instruction}".')

    def _revert_target(self, document: Blueprint, target: str) -> TierOutcome:
        words = set(target.split())
        for turn in reversed(self._turns):
            working = clone_blueprint(document)
            if words & _THEME_COLOR_TARGETS:
                changed = self._restore_theme_colors(working, turn)
            elif words & _FONT_TARGETS:
                previous = turn.before.theme.fontFamily
                changed = previous != turn.after.theme.fontFamily and ops.set_font(working, previous)
            else:
                changed = self._restore_content_field(working, turn, target.split()[-1])
            if changed:
                return Resolved(tier=self.name, document=working, message=f"Changed the {target} back.")
        return self._decline(f"no recent {target} change to revert")

    def _restore_theme_colors(self, working: Blueprint, turn: _Turn) -> bool:
        changed = False
        if turn.before.theme.mode != turn.after.theme.mode:
            working.theme.mode = turn.before.theme.mode
            changed = True
        for field in ops.THEME_COLOR_FIELDS:
            previous = getattr(turn.before.theme, field)
            if previous != getattr(turn.after.theme, field):
                changed = ops.set_theme_color(working, field, previous) or changed
        return changed

    def _restore_content_field(self, working: Blueprint, turn: _Turn, field_name: str) -> bool:
        changed = False
        for _, old in turn.before.iter_sections():
            new = turn.after.find_section(old.id)
            current = working.find_section(old.id)
            if new is None or current is None:
                continue
            for key, value in old.content.items():
                if key.lower() != field_name or new[2].content.get(key) == value:
                    continue
                changed = ops.set_content_field(current[2], key, value) or changed
        return changed

    def _repeat_for(self, document: Blueprint, target: str) -> TierOutcome:
        section_type = ops.section_type_from_phrase(target)
        if section_type is None:
            return self._decline(f"unknown section '{target}'")
        turn = next((t for t in reversed(self._turns) if t.touched), None)
        if turn is None:
            return self._decline("nothing recent to repeat")
        source_id = turn.touched[0]
        old = turn.before.find_section(source_id)
        new = turn.after.find_section(source_id)
        if old is None or new is None:
            return self._decline("the last change cannot be repeated")
        style_changes = {k: v for k, v in new[2].styles.items() if old[2].styles.get(k) != v}
        if not style_changes:
            return self._decline("the last change was not a style change")

        working = clone_blueprint(document)
        section = ops.find_section_by_type(working, section_type)
        if section is None:
            return self._decline(f"no {section_type} section")
        for key, value in style_changes.items():
            if key == "size" and turn.size_delta:
                ops.step_size(section, turn.size_delta)
            else:
                ops.set_style(section, key, value)
        return Resolved(tier=self.name, document=working, message=f"Did the same for the {section_type} section.")

    def _repeat_size(self, document: Blueprint) -> TierOutcome:
        turn = next((t for t in reversed(self._turns) if t.touched), None)
        if turn is None or not turn.size_delta:
            return self._decline("nothing to repeat")
        working = clone_blueprint(document)
        located = working.find_section(turn.touched[0])
        if located is None:
            return self._decline("the last section is gone")
        ops.step_size(located[2], turn.size_delta)
        direction = "bigger" if turn.size_delta > 0 else "smaller"
        return Resolved(tier=self.name, document=working, message=f"Made that section {direction} again.")

    def _section_at(self, document: Blueprint, index: int) -> Optional[Section]:
        layout = document.home.layout
        if not layout or index >= len(layout):
            return None
        return layout[index]

    def _touched_sections(self, before: Blueprint, after: Blueprint, instruction: str) -> tuple[str, ...]:
        positions = {
            section.id: (page.slug, idx)
            for page in before.pages.values()
            for idx, section in enumerate(page.layout)
        }
        touched: list[str] = []
        for page in after.pages.values():
            for idx, section in enumerate(page.layout):
                old = before.find_section(section.id)
                if old is None or old[2] != section or positions.get(section.id) != (page.slug, idx):
                    touched.append(section.id)
        mentioned = {ops.normalize_section_type(word) for word in re.findall(r"[a-z]+", instruction.lower())}
        # Sections named in the instruction come first; the rest keep document order.
        touched.sort(key=lambda section_id: after.find_section(section_id)[2].type not in mentioned)
        return tuple(touched)

    def _decline(self, detail: str) -> Declined:
        return Declined(tier=self.name, reason=DeclineReason.refinement_ambiguous, detail=detail)
