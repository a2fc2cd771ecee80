from typing import Any, Callable, Dict, List, Union


class _Done:
    """Sentinel a task handler returns once an item needs no further passes."""

    def __repr__(self):
        return "DONE"

    def __bool__(self):
        return False


DONE = _Done()

TaskHandler = Callable[[Any, str], Any]


def is_done(result) -> bool:
    # Handlers written against the older contract signal completion with False
    return result is DONE or result is False


def to_items(items: Union[List[Any], Dict[str, Any]]) -> Dict[str, Any]:
    """Give each queued item a sub-key that stays stable across requeues."""
    if isinstance(items, dict):
        return {str(k): v for k, v in items.items()}
    return {str(i): item for i, item in enumerate(items)}


class Batch:
    def __init__(self, key: str, items: Dict[str, Any], group: str = "default"):
        self.key = key
        self.items = items
        self.group = group

    def __len__(self):
        return len(self.items)

    def __repr__(self):
        return f"Batch(key={self.key!r}, items={len(self.items)}, group={self.group!r})"
