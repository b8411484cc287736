from __future__ import annotations

import logging

from .constants import UNKNOWN_NAME
from .ids import ConversationId, ConversationKind
from .models import ConversationSnapshot

logger = logging.getLogger(__name__)


class Directory:
    """
    Session-scoped map of users and conversations.

    Holds the one-to-one mapping in both directions, the set of known group
    conversations, the account's own user id, and a snapshot per conversation.

    Every mutator updates all affected structures before returning and never
    awaits, so with a single event loop no reader can observe the forward DM
    map updated without its reverse.
    """

    def __init__(self) -> None:
        self._dm_by_user: dict[str, ConversationId] = {}
        self._user_by_dm: dict[ConversationId, str] = {}
        self._groups: set[ConversationId] = set()
        self._snapshots: dict[ConversationId, ConversationSnapshot] = {}
        self.self_user_id: str | None = None

    # -- lookups

    def resolve_dm(self, user_id: str) -> ConversationId | None:
        """
        Return the DM conversation with `user_id`, if one is known.

        A missing entry means the caller has to create the conversation; the
        directory never invents one.
        """

        return self._dm_by_user.get(user_id)

    def dm_peer(self, conversation_id: ConversationId) -> str | None:
        return self._user_by_dm.get(conversation_id)

    def is_known_dm(self, conversation_id: ConversationId) -> bool:
        return conversation_id in self._user_by_dm

    def is_known_group(self, conversation_id: ConversationId) -> bool:
        return conversation_id in self._groups

    def is_known(self, conversation_id: ConversationId) -> bool:
        return self.is_known_dm(conversation_id) or self.is_known_group(conversation_id)

    def lookup(self, token: str) -> ConversationId | None:
        """Find a known conversation by its bare token (DMs first)."""

        dm = ConversationId(ConversationKind.DM, token)
        if dm in self._user_by_dm:
            return dm
        space = ConversationId(ConversationKind.SPACE, token)
        if space in self._groups:
            return space
        return None

    def dm_items(self) -> list[tuple[str, ConversationId]]:
        return list(self._dm_by_user.items())

    def groups(self) -> list[ConversationId]:
        return list(self._groups)

    def snapshot(self, conversation_id: ConversationId) -> ConversationSnapshot | None:
        return self._snapshots.get(conversation_id)

    def ensure_snapshot(self, conversation_id: ConversationId) -> ConversationSnapshot:
        snap = self._snapshots.get(conversation_id)
        if snap is None:
            snap = ConversationSnapshot(conversation_id=conversation_id)
            self._snapshots[conversation_id] = snap
        return snap

    # -- mutations

    def record_dm(self, conversation_id: ConversationId, user_id: str) -> None:
        """
        Map `user_id` <-> `conversation_id` (server is authoritative).

        A previous peer of this conversation, or a previous conversation of
        this peer, is unlinked first so both maps stay exact inverses.
        """

        old_user = self._user_by_dm.get(conversation_id)
        if old_user is not None and old_user != user_id:
            self._dm_by_user.pop(old_user, None)
        old_conv = self._dm_by_user.get(user_id)
        if old_conv is not None and old_conv != conversation_id:
            self._user_by_dm.pop(old_conv, None)

        self._dm_by_user[user_id] = conversation_id
        self._user_by_dm[conversation_id] = user_id

        snap = self.ensure_snapshot(conversation_id)
        members = [user_id]
        if self.self_user_id:
            members.insert(0, self.self_user_id)
        snap.add_members(members)

    def record_group(self, conversation_id: ConversationId, name: str | None = None) -> None:
        self._groups.add(conversation_id)
        self.apply_group_name(conversation_id, name)

    def apply_group_name(self, conversation_id: ConversationId, name: str | None) -> bool:
        """
        Name a group conversation.

        A missing name falls back to the "Unknown" label. A real name replaces
        a missing or "Unknown" label but never another real name. Returns True
        when the stored name changed.
        """

        snap = self.ensure_snapshot(conversation_id)
        if not name:
            if snap.name is None:
                snap.name = UNKNOWN_NAME
                return True
            return False
        if snap.name is None or UNKNOWN_NAME in snap.name:
            snap.name = name
            return True
        return False

    def rename(self, conversation_id: ConversationId, name: str) -> bool:
        """Explicit rename (server event or confirmed RPC): always overwrites."""

        snap = self.ensure_snapshot(conversation_id)
        if snap.name == name:
            return False
        snap.name = name
        return True

    def forget_group(self, conversation_id: ConversationId) -> None:
        self._groups.discard(conversation_id)
        self._snapshots.pop(conversation_id, None)

    def archive(self, conversation_id: ConversationId) -> bool:
        """
        Drop a conversation from whichever map holds it.

        Unknown or already archived conversations are a no-op. Returns True
        when something was removed.
        """

        user_id = self._user_by_dm.pop(conversation_id, None)
        if user_id is not None:
            if self._dm_by_user.get(user_id) == conversation_id:
                del self._dm_by_user[user_id]
            self._snapshots.pop(conversation_id, None)
            return True
        if conversation_id in self._groups:
            self.forget_group(conversation_id)
            return True
        logger.debug("archive of unknown conversation %s ignored", conversation_id)
        return False

    def clear(self) -> None:
        self._dm_by_user.clear()
        self._user_by_dm.clear()
        self._groups.clear()
        self._snapshots.clear()
        self.self_user_id = None
