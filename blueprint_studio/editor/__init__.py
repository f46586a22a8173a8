from blueprint_studio.editor.history import SnapshotHistory
from blueprint_studio.editor.pipeline import ResolutionPipeline
from blueprint_studio.editor.session import EditingSession

__all__ = ["EditingSession", "ResolutionPipeline", "SnapshotHistory"]
