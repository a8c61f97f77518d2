from .session import ChatSession, build_payload

__all__ = ["ChatSession", "build_payload"]
