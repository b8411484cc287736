"""
Wire schema for the Google Chat RPC protocol.

The message classes are real protobuf (proto2) messages. Instead of shipping a
protoc-generated module, the file descriptor is assembled here from a compact
table and registered in a private descriptor pool, so the schema stays
readable next to the code that uses it.

Enum value names live in the package scope (protobuf C++ scoping rules), so
every value carries its enum's prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from google.protobuf import descriptor, descriptor_pb2, descriptor_pool, message_factory

_PACKAGE = "pygchat"
_FDP = descriptor_pb2.FieldDescriptorProto

_SCALARS: dict[str, int] = {
    "string": _FDP.TYPE_STRING,
    "bytes": _FDP.TYPE_BYTES,
    "bool": _FDP.TYPE_BOOL,
    "int32": _FDP.TYPE_INT32,
    "int64": _FDP.TYPE_INT64,
    "uint64": _FDP.TYPE_UINT64,
}


@dataclass(frozen=True, slots=True)
class _Field:
    name: str
    number: int
    type: str
    repeated: bool = False
    oneof: str | None = None


def _f(name: str, number: int, type_: str, *, repeated: bool = False, oneof: str | None = None) -> _Field:
    return _Field(name=name, number=number, type=type_, repeated=repeated, oneof=oneof)


_ENUMS: dict[str, list[tuple[str, int]]] = {
    "ClientType": [
        ("CLIENT_TYPE_UNSPECIFIED", 0),
        ("CLIENT_TYPE_WEB", 1),
        ("CLIENT_TYPE_IOS", 2),
        ("CLIENT_TYPE_ANDROID", 3),
    ],
    "TypingStateType": [
        ("TYPING_STATE_UNSPECIFIED", 0),
        ("TYPING_STATE_TYPING", 1),
        ("TYPING_STATE_PAUSED", 2),
        ("TYPING_STATE_STOPPED", 3),
    ],
    "PresenceType": [
        ("PRESENCE_UNSPECIFIED", 0),
        ("PRESENCE_ACTIVE", 1),
        ("PRESENCE_INACTIVE", 2),
        ("PRESENCE_SHARING_DISABLED", 3),
    ],
    "DndStateType": [
        ("DND_STATE_UNSPECIFIED", 0),
        ("DND_STATE_AVAILABLE", 1),
        ("DND_STATE_DND", 2),
    ],
    "ClientPresenceStateType": [
        ("CLIENT_PRESENCE_STATE_UNSPECIFIED", 0),
        ("CLIENT_PRESENCE_STATE_DESKTOP_ACTIVE", 1),
        ("CLIENT_PRESENCE_STATE_DESKTOP_IDLE", 2),
    ],
    "MembershipChangeType": [
        ("MEMBERSHIP_CHANGE_UNSPECIFIED", 0),
        ("MEMBERSHIP_CHANGE_JOINED", 1),
        ("MEMBERSHIP_CHANGE_LEFT", 2),
    ],
    "SegmentType": [
        ("SEGMENT_TYPE_TEXT", 0),
        ("SEGMENT_TYPE_LINE_BREAK", 1),
        ("SEGMENT_TYPE_LINK", 2),
    ],
    "ConversationType": [
        ("CONVERSATION_TYPE_UNSPECIFIED", 0),
        ("CONVERSATION_TYPE_ONE_TO_ONE", 1),
        ("CONVERSATION_TYPE_GROUP", 2),
    ],
    "ConversationView": [
        ("CONVERSATION_VIEW_UNSPECIFIED", 0),
        ("CONVERSATION_VIEW_INBOX", 1),
        ("CONVERSATION_VIEW_ARCHIVED", 2),
    ],
    "FocusType": [
        ("FOCUS_TYPE_UNSPECIFIED", 0),
        ("FOCUS_TYPE_FOCUSED", 1),
        ("FOCUS_TYPE_UNFOCUSED", 2),
    ],
    "CatchUpStatus": [
        ("CATCH_UP_STATUS_UNSPECIFIED", 0),
        ("CATCH_UP_STATUS_COMPLETED", 1),
        ("CATCH_UP_STATUS_PAGINATED", 2),
    ],
}

_MESSAGES: dict[str, list[_Field]] = {
    # Envelopes
    "RequestHeader": [
        _f("client_type", 1, "ClientType"),
        _f("client_version", 2, "int64"),
        _f("auth_token", 3, "string"),
    ],
    "ResponseHeader": [
        _f("status_code", 1, "int32"),
        _f("error_description", 2, "string"),
    ],
    # Identifiers
    "UserId": [_f("id", 1, "string")],
    "DmId": [_f("dm_id", 1, "string")],
    "SpaceId": [_f("space_id", 1, "string")],
    "GroupId": [
        _f("space_id", 1, "SpaceId", oneof="kind"),
        _f("dm_id", 2, "DmId", oneof="kind"),
    ],
    "EventRequestHeader": [
        _f("group_id", 1, "GroupId"),
        _f("client_generated_id", 2, "uint64"),
    ],
    # Users and presence
    "CustomStatus": [_f("status_text", 1, "string")],
    "UserStatus": [
        _f("user_id", 1, "UserId"),
        _f("custom_status", 2, "CustomStatus"),
    ],
    "UserPresence": [
        _f("user_id", 1, "UserId"),
        _f("presence", 2, "PresenceType"),
        _f("dnd_state", 3, "DndStateType"),
        _f("active_until_usec", 4, "int64"),
        _f("user_status", 5, "UserStatus"),
    ],
    "User": [
        _f("user_id", 1, "UserId"),
        _f("name", 2, "string"),
        _f("first_name", 3, "string"),
        _f("last_name", 4, "string"),
        _f("email", 5, "string"),
        _f("avatar_url", 6, "string"),
        _f("gender", 7, "string"),
        _f("deleted", 8, "bool"),
    ],
    "Member": [_f("user", 1, "User")],
    "MemberProfile": [_f("member", 1, "Member")],
    "MemberId": [_f("user_id", 1, "UserId")],
    "InviteeId": [_f("user_id", 1, "UserId")],
    # Conversations
    "DmMembers": [_f("members", 1, "UserId", repeated=True)],
    "WorldItemLite": [
        _f("group_id", 1, "GroupId"),
        _f("room_name", 2, "string"),
        _f("dm_members", 3, "DmMembers"),
        _f("sort_timestamp", 4, "int64"),
    ],
    "GroupMember": [
        _f("user_id", 1, "UserId"),
        _f("fallback_name", 2, "string"),
    ],
    "Group": [
        _f("group_id", 1, "GroupId"),
        _f("name", 2, "string"),
        _f("type", 3, "ConversationType"),
        _f("members", 4, "GroupMember", repeated=True),
    ],
    # Message content
    "Segment": [
        _f("type", 1, "SegmentType"),
        _f("text", 2, "string"),
        _f("link_target", 3, "string"),
        _f("bold", 4, "bool"),
        _f("italic", 5, "bool"),
        _f("strikethrough", 6, "bool"),
        _f("underline", 7, "bool"),
    ],
    "EventAnnotation": [
        _f("type", 1, "int32"),
        _f("value", 2, "string"),
    ],
    "Attachment": [
        _f("attachment_id", 1, "string"),
        _f("filename", 2, "string"),
        _f("content_type", 3, "string"),
    ],
    "MessageContent": [
        _f("segments", 1, "Segment", repeated=True),
        _f("attachments", 2, "Attachment", repeated=True),
    ],
    "Message": [
        _f("id", 1, "string"),
        _f("creator", 2, "UserId"),
        _f("create_time", 3, "int64"),
        _f("content", 4, "MessageContent"),
        _f("annotations", 5, "EventAnnotation", repeated=True),
        _f("client_generated_id", 6, "uint64"),
    ],
    # Events
    "MessagePostedEvent": [_f("message", 1, "Message")],
    "MembershipChangedEvent": [
        _f("type", 1, "MembershipChangeType"),
        _f("affected_members", 2, "UserId", repeated=True),
    ],
    "TypingStateChangedEvent": [
        _f("user_id", 1, "UserId"),
        _f("state", 2, "TypingStateType"),
    ],
    "ReadReceiptChangedEvent": [
        _f("user_id", 1, "UserId"),
        _f("last_read_time", 2, "int64"),
    ],
    "UserStatusUpdatedEvent": [_f("user_presence", 1, "UserPresence")],
    "GroupUpdatedEvent": [_f("new_name", 1, "string")],
    "Event": [
        _f("group_id", 1, "GroupId"),
        _f("revision_timestamp", 2, "int64"),
        _f("message_posted", 10, "MessagePostedEvent", oneof="body"),
        _f("membership_changed", 11, "MembershipChangedEvent", oneof="body"),
        _f("typing_state_changed", 12, "TypingStateChangedEvent", oneof="body"),
        _f("read_receipt_changed", 13, "ReadReceiptChangedEvent", oneof="body"),
        _f("user_status_updated", 14, "UserStatusUpdatedEvent", oneof="body"),
        _f("group_updated", 15, "GroupUpdatedEvent", oneof="body"),
    ],
    "StreamEventsResponse": [_f("events", 1, "Event", repeated=True)],
    # RPC: self status / presence / members
    "GetSelfUserStatusRequest": [_f("request_header", 1, "RequestHeader")],
    "GetSelfUserStatusResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("user_status", 2, "UserStatus"),
    ],
    "GetUserPresenceRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("user_ids", 2, "UserId", repeated=True),
        _f("include_user_status", 3, "bool"),
        _f("include_active_until", 4, "bool"),
    ],
    "GetUserPresenceResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("user_presences", 2, "UserPresence", repeated=True),
    ],
    "GetMembersRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("member_ids", 2, "MemberId", repeated=True),
    ],
    "GetMembersResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("member_profiles", 2, "MemberProfile", repeated=True),
    ],
    # RPC: roster
    "PaginatedWorldRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("fetch_from_user_spaces", 2, "bool"),
        _f("fetch_snippets_for_unnamed_rooms", 3, "bool"),
    ],
    "PaginatedWorldResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("world_items", 2, "WorldItemLite", repeated=True),
    ],
    "SyncRecentConversationsRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("max_conversations", 2, "int32"),
        _f("max_events_per_conversation", 3, "int32"),
    ],
    "SyncRecentConversationsResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("groups", 2, "Group", repeated=True),
    ],
    # RPC: catch-up
    "CatchUpRange": [
        _f("from_revision_timestamp", 1, "int64"),
        _f("to_revision_timestamp", 2, "int64"),
    ],
    "CatchUpGroupRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("range", 3, "CatchUpRange"),
        _f("page_size", 4, "int32"),
        _f("cutoff_size", 5, "int32"),
    ],
    "CatchUpUserRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("range", 2, "CatchUpRange"),
        _f("page_size", 3, "int32"),
        _f("cutoff_size", 4, "int32"),
    ],
    "CatchUpResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("events", 2, "Event", repeated=True),
        _f("status", 3, "CatchUpStatus"),
    ],
    # RPC: outbound actions
    "SendMessageRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("event_request_header", 2, "EventRequestHeader"),
        _f("message_content", 3, "MessageContent"),
        _f("annotations", 4, "EventAnnotation", repeated=True),
    ],
    "SendMessageResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("message", 2, "Message"),
    ],
    "CreateUploadSessionRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("filename", 3, "string"),
        _f("size", 4, "int64"),
        _f("content_type", 5, "string"),
    ],
    "CreateUploadSessionResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("upload_url", 2, "string"),
    ],
    "UploadBytesRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("upload_url", 2, "string"),
        _f("data", 3, "bytes"),
    ],
    "UploadBytesResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("attachment_id", 2, "string"),
    ],
    "SetTypingStateRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("state", 3, "TypingStateType"),
    ],
    "MarkGroupReadstateRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("last_read_time", 3, "int64"),
    ],
    "SetFocusRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("type", 3, "FocusType"),
    ],
    "PresenceStateSetting": [
        _f("timeout_secs", 1, "int32"),
        _f("type", 2, "ClientPresenceStateType"),
    ],
    "DndSetting": [
        _f("do_not_disturb", 1, "bool"),
        _f("timeout_secs", 2, "int32"),
    ],
    "MoodSetting": [_f("segments", 1, "Segment", repeated=True)],
    "SetPresenceRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("presence_state_setting", 2, "PresenceStateSetting"),
        _f("dnd_setting", 3, "DndSetting"),
        _f("mood_setting", 4, "MoodSetting"),
    ],
    "CreateConversationRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("type", 2, "ConversationType"),
        _f("invitee_ids", 3, "InviteeId", repeated=True),
        _f("client_generated_id", 4, "uint64"),
        _f("name", 5, "string"),
    ],
    "CreateConversationResponse": [
        _f("response_header", 1, "ResponseHeader"),
        _f("group", 2, "Group"),
    ],
    "ModifyConversationViewRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("group_id", 2, "GroupId"),
        _f("new_view", 3, "ConversationView"),
        _f("last_event_timestamp", 4, "int64"),
    ],
    "RemoveMembershipsRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("event_request_header", 2, "EventRequestHeader"),
        _f("participant_id", 3, "UserId"),
    ],
    "AddMembershipsRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("event_request_header", 2, "EventRequestHeader"),
        _f("invitee_ids", 3, "InviteeId", repeated=True),
    ],
    "RenameConversationRequest": [
        _f("request_header", 1, "RequestHeader"),
        _f("event_request_header", 2, "EventRequestHeader"),
        _f("new_name", 3, "string"),
    ],
    # Shared acknowledgement for write-only RPCs.
    "AckResponse": [_f("response_header", 1, "ResponseHeader")],
}


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = f"{_PACKAGE}/chat.proto"
    fdp.package = _PACKAGE
    fdp.syntax = "proto2"

    for enum_name, values in _ENUMS.items():
        enum = fdp.enum_type.add()
        enum.name = enum_name
        for value_name, number in values:
            v = enum.value.add()
            v.name = value_name
            v.number = number

    for msg_name, fields in _MESSAGES.items():
        msg = fdp.message_type.add()
        msg.name = msg_name
        oneofs: dict[str, int] = {}
        for fd in fields:
            fld = msg.field.add()
            fld.name = fd.name
            fld.number = fd.number
            fld.label = _FDP.LABEL_REPEATED if fd.repeated else _FDP.LABEL_OPTIONAL
            if fd.type in _SCALARS:
                fld.type = _SCALARS[fd.type]  # type: ignore[assignment]
            elif fd.type in _ENUMS:
                fld.type = _FDP.TYPE_ENUM
                fld.type_name = f".{_PACKAGE}.{fd.type}"
            elif fd.type in _MESSAGES:
                fld.type = _FDP.TYPE_MESSAGE
                fld.type_name = f".{_PACKAGE}.{fd.type}"
            else:
                raise ValueError(f"{msg_name}.{fd.name}: unknown type {fd.type!r}")
            if fd.oneof is not None:
                if fd.oneof not in oneofs:
                    oneofs[fd.oneof] = len(msg.oneof_decl)
                    msg.oneof_decl.add().name = fd.oneof
                fld.oneof_index = oneofs[fd.oneof]

    return fdp


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())


def _message(name: str) -> Any:
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}"))


class EnumType:
    """
    Name and number lookups for one schema enum.

    Values are reachable as attributes (`PresenceType.PRESENCE_ACTIVE`) and
    through `Name()` / `Value()`, like the enum wrappers of generated modules.
    """

    def __init__(self, enum_descriptor: descriptor.EnumDescriptor) -> None:
        self.DESCRIPTOR = enum_descriptor

    def Name(self, number: int) -> str:
        value = self.DESCRIPTOR.values_by_number.get(number)
        if value is None:
            raise ValueError(f"enum {self.DESCRIPTOR.name} has no value {number}")
        return value.name

    def Value(self, name: str) -> int:
        value = self.DESCRIPTOR.values_by_name.get(name)
        if value is None:
            raise ValueError(f"enum {self.DESCRIPTOR.name} has no value named {name!r}")
        return value.number

    def __getattr__(self, name: str) -> int:
        if name == "DESCRIPTOR":
            raise AttributeError(name)
        value = self.DESCRIPTOR.values_by_name.get(name)
        if value is None:
            raise AttributeError(f"enum {self.DESCRIPTOR.name} has no value named {name!r}")
        return value.number


def _enum(name: str) -> EnumType:
    return EnumType(_POOL.FindEnumTypeByName(f"{_PACKAGE}.{name}"))


ClientType = _enum("ClientType")
TypingStateType = _enum("TypingStateType")
PresenceType = _enum("PresenceType")
DndStateType = _enum("DndStateType")
ClientPresenceStateType = _enum("ClientPresenceStateType")
MembershipChangeType = _enum("MembershipChangeType")
SegmentType = _enum("SegmentType")
ConversationType = _enum("ConversationType")
ConversationView = _enum("ConversationView")
FocusType = _enum("FocusType")
CatchUpStatus = _enum("CatchUpStatus")

RequestHeader = _message("RequestHeader")
ResponseHeader = _message("ResponseHeader")
UserId = _message("UserId")
DmId = _message("DmId")
SpaceId = _message("SpaceId")
GroupId = _message("GroupId")
EventRequestHeader = _message("EventRequestHeader")
CustomStatus = _message("CustomStatus")
UserStatus = _message("UserStatus")
UserPresence = _message("UserPresence")
User = _message("User")
Member = _message("Member")
MemberProfile = _message("MemberProfile")
MemberId = _message("MemberId")
InviteeId = _message("InviteeId")
DmMembers = _message("DmMembers")
WorldItemLite = _message("WorldItemLite")
GroupMember = _message("GroupMember")
Group = _message("Group")
Segment = _message("Segment")
EventAnnotation = _message("EventAnnotation")
Attachment = _message("Attachment")
MessageContent = _message("MessageContent")
Message = _message("Message")
MessagePostedEvent = _message("MessagePostedEvent")
MembershipChangedEvent = _message("MembershipChangedEvent")
TypingStateChangedEvent = _message("TypingStateChangedEvent")
ReadReceiptChangedEvent = _message("ReadReceiptChangedEvent")
UserStatusUpdatedEvent = _message("UserStatusUpdatedEvent")
GroupUpdatedEvent = _message("GroupUpdatedEvent")
Event = _message("Event")
StreamEventsResponse = _message("StreamEventsResponse")
GetSelfUserStatusRequest = _message("GetSelfUserStatusRequest")
GetSelfUserStatusResponse = _message("GetSelfUserStatusResponse")
GetUserPresenceRequest = _message("GetUserPresenceRequest")
GetUserPresenceResponse = _message("GetUserPresenceResponse")
GetMembersRequest = _message("GetMembersRequest")
GetMembersResponse = _message("GetMembersResponse")
PaginatedWorldRequest = _message("PaginatedWorldRequest")
PaginatedWorldResponse = _message("PaginatedWorldResponse")
SyncRecentConversationsRequest = _message("SyncRecentConversationsRequest")
SyncRecentConversationsResponse = _message("SyncRecentConversationsResponse")
CatchUpRange = _message("CatchUpRange")
CatchUpGroupRequest = _message("CatchUpGroupRequest")
CatchUpUserRequest = _message("CatchUpUserRequest")
CatchUpResponse = _message("CatchUpResponse")
SendMessageRequest = _message("SendMessageRequest")
SendMessageResponse = _message("SendMessageResponse")
CreateUploadSessionRequest = _message("CreateUploadSessionRequest")
CreateUploadSessionResponse = _message("CreateUploadSessionResponse")
UploadBytesRequest = _message("UploadBytesRequest")
UploadBytesResponse = _message("UploadBytesResponse")
SetTypingStateRequest = _message("SetTypingStateRequest")
MarkGroupReadstateRequest = _message("MarkGroupReadstateRequest")
SetFocusRequest = _message("SetFocusRequest")
PresenceStateSetting = _message("PresenceStateSetting")
DndSetting = _message("DndSetting")
MoodSetting = _message("MoodSetting")
SetPresenceRequest = _message("SetPresenceRequest")
CreateConversationRequest = _message("CreateConversationRequest")
CreateConversationResponse = _message("CreateConversationResponse")
ModifyConversationViewRequest = _message("ModifyConversationViewRequest")
RemoveMembershipsRequest = _message("RemoveMembershipsRequest")
AddMembershipsRequest = _message("AddMembershipsRequest")
RenameConversationRequest = _message("RenameConversationRequest")
AckResponse = _message("AckResponse")


# method name -> (request class, response class)
RPC_METHODS: dict[str, tuple[Any, Any]] = {
    "get_self_user_status": (GetSelfUserStatusRequest, GetSelfUserStatusResponse),
    "get_user_presence": (GetUserPresenceRequest, GetUserPresenceResponse),
    "get_members": (GetMembersRequest, GetMembersResponse),
    "paginated_world": (PaginatedWorldRequest, PaginatedWorldResponse),
    "sync_recent_conversations": (SyncRecentConversationsRequest, SyncRecentConversationsResponse),
    "catch_up_group": (CatchUpGroupRequest, CatchUpResponse),
    "catch_up_user": (CatchUpUserRequest, CatchUpResponse),
    "send_message": (SendMessageRequest, SendMessageResponse),
    "create_upload_session": (CreateUploadSessionRequest, CreateUploadSessionResponse),
    "upload_bytes": (UploadBytesRequest, UploadBytesResponse),
    "set_typing_state": (SetTypingStateRequest, AckResponse),
    "mark_group_readstate": (MarkGroupReadstateRequest, AckResponse),
    "set_focus": (SetFocusRequest, AckResponse),
    "set_presence": (SetPresenceRequest, AckResponse),
    "create_conversation": (CreateConversationRequest, CreateConversationResponse),
    "modify_conversation_view": (ModifyConversationViewRequest, AckResponse),
    "remove_memberships": (RemoveMembershipsRequest, AckResponse),
    "add_memberships": (AddMembershipsRequest, AckResponse),
    "rename_conversation": (RenameConversationRequest, AckResponse),
}


def response_type_for(method: str) -> Any:
    try:
        return RPC_METHODS[method][1]
    except KeyError:
        raise ValueError(f"unknown rpc method: {method!r}") from None
