from __future__ import annotations

from dataclasses import dataclass, field

from .constants import (
    CATCH_UP_CUTOFF_SIZE,
    CATCH_UP_PAGE_SIZE,
    CLIENT_TYPE_IOS,
    CLIENT_VERSION,
    DEFAULT_API_URL,
    DEFAULT_EVENTS_URL,
    DND_TIMEOUT_S,
    PRESENCE_POLL_INTERVAL_S,
    PRESENCE_TIMEOUT_S,
)


@dataclass(slots=True)
class SessionConfig:
    api_url: str = DEFAULT_API_URL
    events_url: str | None = DEFAULT_EVENTS_URL

    client_type: int = CLIENT_TYPE_IOS
    client_version: int = CLIENT_VERSION

    rpc_timeout_s: float = 30.0
    connect_timeout_s: float = 20.0

    catch_up_page_size: int = CATCH_UP_PAGE_SIZE
    catch_up_cutoff_size: int = CATCH_UP_CUTOFF_SIZE

    presence_poll_interval_s: float = PRESENCE_POLL_INTERVAL_S
    presence_timeout_s: int = PRESENCE_TIMEOUT_S
    dnd_timeout_s: int = DND_TIMEOUT_S

    # Echo suppression: correlation ids expire after `echo_ttl_s`, and at most
    # `echo_max_pending` are remembered (oldest dropped first).
    echo_ttl_s: float = 600.0
    echo_max_pending: int = 1000

    hide_self: bool = False
    treat_invisible_as_offline: bool = False

    headers: dict[str, str] = field(default_factory=dict)
