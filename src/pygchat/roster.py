"""
Roster synchronization.

Turns server listings (world items, presences, member profiles) into
directory entries and UI notifications. Lookups are batched: one presence
request and one member request per listing, however many contacts there are.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from . import proto
from .connection.http import AvatarFetcher, HttpAvatarFetcher
from .constants import (
    ROOMLIST_MAX_CONVERSATIONS,
    ROOMLIST_MAX_EVENTS_PER_CONVERSATION,
    UNKNOWN_NAME,
)
from .envelope import build_request_header
from .exceptions import DecodeError, TransportError
from .ids import from_group_id, is_valid_id, require_user_id
from .models import (
    AvatarUpdate,
    PresenceRecord,
    PresenceStatus,
    ProfileUpdate,
    RoomListing,
    UserInfo,
)
from .session import ChatSession
from .util.asyncio import ensure_task

logger = logging.getLogger(__name__)


def normalize_avatar_url(url: str | None) -> str | None:
    if not url:
        return None
    # The server hands out protocol-relative URLs.
    if url.startswith("//"):
        return "https:" + url
    return url


def presence_from_proto(
    user_presence: Any, *, treat_invisible_as_offline: bool = False
) -> PresenceRecord | None:
    """
    Derive a `PresenceRecord` from a `proto.UserPresence`.

    A contact is reachable when active or not in do-not-disturb. Contacts that
    are neither have no server-side "offline" state; they map to INVISIBLE.
    """

    user_id = user_presence.user_id.id
    if not is_valid_id(user_id):
        return None

    active = user_presence.presence == proto.PresenceType.PRESENCE_ACTIVE
    not_dnd = user_presence.dnd_state == proto.DndStateType.DND_STATE_AVAILABLE
    reachable = active or not_dnd

    if active and not_dnd:
        status = PresenceStatus.AVAILABLE
    elif reachable:
        status = PresenceStatus.AWAY
    elif treat_invisible_as_offline:
        status = PresenceStatus.OFFLINE
    else:
        status = PresenceStatus.INVISIBLE

    text = user_presence.user_status.custom_status.status_text or None
    return PresenceRecord(user_id=user_id, reachable=reachable, status=status, status_text=text)


class RosterSync:
    def __init__(self, session: ChatSession, *, avatar_fetcher: AvatarFetcher | None = None) -> None:
        self.session = session
        self.avatar_fetcher = avatar_fetcher or HttpAvatarFetcher(
            timeout_s=session.config.rpc_timeout_s
        )
        # user id -> (avatar url being fetched, task)
        self._avatar_tasks: dict[str, tuple[str, asyncio.Task[None]]] = {}
        self._poll_in_flight = False

    async def fetch_self_status(self) -> str:
        req = proto.GetSelfUserStatusRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        res = await self.session.call("get_self_user_status", req)

        user_id = res.user_status.user_id.id
        if not is_valid_id(user_id):
            raise DecodeError("self status response carries no valid user id")
        self.session.directory.self_user_id = user_id
        await self.session.events.emit("self.status", user_id)
        return user_id

    async def refresh_world(self) -> list[str]:
        req = proto.PaginatedWorldRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        req.fetch_from_user_spaces = True
        req.fetch_snippets_for_unnamed_rooms = True
        res = await self.session.call("paginated_world", req)
        return await self.reconcile_world_listing(res.world_items)

    def _other_member(self, members: Any) -> str | None:
        ids = [m.id for m in members]
        if not ids:
            return None
        other = ids[0]
        if other == self.session.self_user_id and len(ids) > 1:
            other = ids[1]
        return other if is_valid_id(other) else None

    async def reconcile_world_listing(self, items: Iterable[Any]) -> list[str]:
        """
        Record every DM and space from a world listing.

        Returns the user ids that were batched into the follow-up presence and
        member lookups (DM peers first, then previously known contacts).
        """

        directory = self.session.directory
        peers: dict[str, None] = {}
        changed = False

        for item in items:
            conv = from_group_id(item.group_id) if item.HasField("group_id") else None
            if conv is None:
                logger.warning("skipping world item without a valid group id")
                continue

            if conv.is_dm:
                peer = self._other_member(item.dm_members.members)
                if peer is None:
                    logger.warning("skipping DM %s without a valid peer", conv)
                    continue
                directory.record_dm(conv, peer)
                peers[peer] = None
                await self.session.add_contact(peer)
            else:
                name = item.room_name if item.HasField("room_name") else None
                directory.record_group(conv, name)
            changed = True

        if changed:
            await self.session.events.emit("conversations.changed")

        user_ids = list(dict.fromkeys([*peers, *sorted(self.session.contacts)]))
        if not user_ids:
            return []

        try:
            await self.fetch_presence(user_ids)
        except TransportError as e:
            logger.warning("presence lookup for %d users failed: %s", len(user_ids), e)
        try:
            await self.fetch_members(user_ids)
        except TransportError as e:
            logger.warning("member lookup for %d users failed: %s", len(user_ids), e)
        return user_ids

    async def fetch_presence(self, user_ids: Iterable[str]) -> list[PresenceRecord]:
        valid = [u for u in dict.fromkeys(user_ids) if is_valid_id(u)]
        if not valid:
            return []

        req = proto.GetUserPresenceRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        for user_id in valid:
            req.user_ids.add().id = user_id
        req.include_user_status = True
        req.include_active_until = True

        res = await self.session.call("get_user_presence", req)
        return await self.reconcile_presences(res.user_presences)

    async def reconcile_presences(self, presences: Iterable[Any]) -> list[PresenceRecord]:
        out: list[PresenceRecord] = []
        offline = self.session.config.treat_invisible_as_offline
        for up in presences:
            record = presence_from_proto(up, treat_invisible_as_offline=offline)
            if record is None:
                logger.warning("skipping presence entry without a valid user id")
                continue
            out.append(record)
            await self.session.events.emit("buddy.presence", record)
        return out

    async def poll_presence(self) -> bool:
        """
        One presence poll over the buddy list.

        Skipped (returns False) while disconnected or while a previous poll is
        still waiting for its response.
        """

        if not self.session.connected or self._poll_in_flight:
            return False
        self._poll_in_flight = True
        try:
            users = sorted(self.session.contacts)
            if users:
                await self.fetch_presence(users)
        finally:
            self._poll_in_flight = False
        return True

    async def fetch_members(self, user_ids: Iterable[str]) -> list[ProfileUpdate]:
        valid = [u for u in dict.fromkeys(user_ids) if is_valid_id(u)]
        if not valid:
            return []

        req = proto.GetMembersRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        for user_id in valid:
            req.member_ids.add().user_id.id = user_id

        res = await self.session.call("get_members", req)
        return await self.reconcile_member_profiles(res.member_profiles)

    async def reconcile_member_profiles(self, profiles: Iterable[Any]) -> list[ProfileUpdate]:
        out: list[ProfileUpdate] = []
        for profile in profiles:
            if not profile.HasField("member") or not profile.member.HasField("user"):
                logger.warning("skipping member profile without a user")
                continue
            user = profile.member.user
            user_id = user.user_id.id
            if not is_valid_id(user_id):
                logger.warning("skipping member profile with invalid user id %r", user_id)
                continue

            update = ProfileUpdate(
                user_id=user_id,
                alias=user.name or user.email or None,
                avatar_url=normalize_avatar_url(user.avatar_url),
            )
            out.append(update)
            await self.session.events.emit("buddy.profile", update)

            if update.avatar_url:
                self._maybe_fetch_avatar(user_id, update.avatar_url)
        return out

    def _maybe_fetch_avatar(self, user_id: str, url: str) -> bool:
        if self.session.avatar_refs.get(user_id) == url:
            return False
        inflight = self._avatar_tasks.get(user_id)
        if inflight is not None:
            if inflight[0] == url:
                return False
            inflight[1].cancel()
        task = ensure_task(self._fetch_avatar(user_id, url), name=f"pygchat.avatar.{user_id}")
        self._avatar_tasks[user_id] = (url, task)
        return True

    async def _fetch_avatar(self, user_id: str, url: str) -> None:
        try:
            data = await self.avatar_fetcher.fetch(url)
        except Exception as e:
            logger.warning("failed to get buddy photo for %s from %s: %s", user_id, url, e)
            return
        finally:
            entry = self._avatar_tasks.get(user_id)
            if entry is not None and entry[1] is asyncio.current_task():
                del self._avatar_tasks[user_id]

        self.session.avatar_refs[user_id] = url
        await self.session.events.emit(
            "buddy.avatar", AvatarUpdate(user_id=user_id, data=data, checksum=url)
        )

    async def drain(self) -> None:
        """Wait for avatar downloads that are currently in flight."""

        tasks = [t for _, t in self._avatar_tasks.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        tasks = [t for _, t in self._avatar_tasks.values()]
        self._avatar_tasks.clear()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def get_user_info(self, user_id: str) -> UserInfo | None:
        uid = require_user_id(user_id)
        req = proto.GetMembersRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        req.member_ids.add().user_id.id = uid

        res = await self.session.call("get_members", req)
        if not res.member_profiles:
            return None
        member = res.member_profiles[0].member
        if not member.HasField("user"):
            return None
        user = member.user
        return UserInfo(
            user_id=uid,
            display_name=user.name or None,
            first_name=user.first_name or None,
            photo_url=normalize_avatar_url(user.avatar_url),
            email=user.email or None,
            gender=user.gender or None,
        )

    async def list_rooms(self) -> list[RoomListing]:
        req = proto.SyncRecentConversationsRequest()
        req.request_header.CopyFrom(build_request_header(self.session))
        req.max_conversations = ROOMLIST_MAX_CONVERSATIONS
        req.max_events_per_conversation = ROOMLIST_MAX_EVENTS_PER_CONVERSATION
        res = await self.session.call("sync_recent_conversations", req)

        rooms: list[RoomListing] = []
        for group in res.groups:
            if group.type != proto.ConversationType.CONVERSATION_TYPE_GROUP:
                continue
            conv = from_group_id(group.group_id)
            if conv is None:
                continue
            users = ", ".join(m.fallback_name or UNKNOWN_NAME for m in group.members)
            rooms.append(RoomListing(conversation_id=conv, name=group.name or None, users=users))
        return rooms
