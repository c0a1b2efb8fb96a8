from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, Optional, Type

from autocontrol.net.messages import OUTBOUND_KINDS, MessageType

# handler(payload, tag)
MessageHandler = Callable[[bytes, int], None]


class RegistryError(RuntimeError):
    pass


class UnknownMessageType(RegistryError):
    pass


class DuplicateTag(RegistryError):
    pass


class MessageRegistry:
    """Maps outbound message kinds to wire tags and inbound tags to handlers.

    Outbound lookup is strict: a kind that was never registered is an error,
    never a default tag. Inbound lookup is lenient: a tag with no handler just
    returns None so a newer controller can add message types.
    """

    def __init__(self, kinds: Iterable[type] = OUTBOUND_KINDS) -> None:
        self._outbound: Dict[type, int] = {}
        self._handlers: Dict[int, MessageHandler] = {}
        self._lock = threading.Lock()
        for cls in kinds:
            self.register_kind(cls)

    # -------------------------
    # outbound
    # -------------------------

    def register_kind(self, cls: Type, tag: Optional[int] = None) -> None:
        if tag is None:
            tag = getattr(cls, "TYPE", None)
        if tag is None:
            raise RegistryError(f"{cls.__name__} has no TYPE and no explicit tag")
        t = int(tag)

        with self._lock:
            for other, other_tag in self._outbound.items():
                if other_tag == t and other is not cls:
                    raise DuplicateTag(f"tag {t} already registered for {other.__name__}")
            self._outbound[cls] = t

    def tag_for(self, message: object) -> int:
        t = self._outbound.get(type(message))
        if t is None:
            raise UnknownMessageType(f"Unregistered message kind: {type(message).__name__}")
        return t

    # -------------------------
    # inbound
    # -------------------------

    def register_handler(self, tag: int, handler: MessageHandler) -> None:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._handlers[int(tag)] = handler

    def remove_handler(self, tag: int) -> None:
        with self._lock:
            self._handlers.pop(int(tag), None)

    def handler_for(self, tag: int) -> Optional[MessageHandler]:
        return self._handlers.get(int(tag))


def tag_name(tag: int) -> str:
    try:
        return MessageType(tag).name
    except ValueError:
        return f"UNKNOWN({int(tag)})"
