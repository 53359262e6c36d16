from atrium.rag.context import ContextAssembler, UserProfile

__all__ = ["ContextAssembler", "UserProfile"]
