from __future__ import annotations

DEFAULT_API_URL = "https://chat.google.com/api"
DEFAULT_EVENTS_URL = "wss://chat.google.com/webchannel/events"
DEFAULT_ORIGIN = "https://chat.google.com"

# Identity the official iOS client reports in every request header.
CLIENT_TYPE_IOS = 2
CLIENT_VERSION = 2440378181258

# Catch-up paging (server may truncate to the cutoff).
CATCH_UP_PAGE_SIZE = 500
CATCH_UP_CUTOFF_SIZE = 500

# Presence settings sent with set_presence.
PRESENCE_TIMEOUT_S = 720
DND_TIMEOUT_S = 172800

PRESENCE_POLL_INTERVAL_S = 30.0

# Room listing limits.
ROOMLIST_MAX_CONVERSATIONS = 100
ROOMLIST_MAX_EVENTS_PER_CONVERSATION = 1

# Annotation type marking a "/me" action message.
ME_ACTION_ANNOTATION_TYPE = 4

UNKNOWN_NAME = "Unknown"

# Identifier shape accepted by the server.
MAX_ID_LENGTH = 128
