from stashchat.store.models import Base, Item

__all__ = ["Base", "Item"]
