from blueprint_studio.routers import sessions

__all__ = ["sessions"]
