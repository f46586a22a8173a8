from blueprint_studio.schemas.blueprint import (
    SECTION_TYPES,
    Blueprint,
    Navigation,
    NavigationLink,
    Page,
    Section,
    Theme,
    ThemeMode,
    clone_blueprint,
)
from blueprint_studio.schemas.editor import (
    BusinessContext,
    DeclineReason,
    ResolutionOutcome,
    SaveState,
    SaveStatus,
)

__all__ = [
    "SECTION_TYPES",
    "Blueprint",
    "BusinessContext",
    "DeclineReason",
    "Navigation",
    "NavigationLink",
    "Page",
    "ResolutionOutcome",
    "SaveState",
    "SaveStatus",
    "Section",
    "Theme",
    "ThemeMode",
    "clone_blueprint",
]
