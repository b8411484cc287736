"""
Message segment rendering boundary.

Converting rich markup into segments belongs to the UI layer. The core only
depends on the `SegmentRenderer` protocol; `PlainTextRenderer` is the default
and treats the input as plain text with newlines.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from . import proto
from .models import Segment, SegmentKind

_ME_PREFIX = "/me "

_KIND_TO_WIRE: dict[SegmentKind, str] = {
    SegmentKind.TEXT: "SEGMENT_TYPE_TEXT",
    SegmentKind.LINE_BREAK: "SEGMENT_TYPE_LINE_BREAK",
    SegmentKind.LINK: "SEGMENT_TYPE_LINK",
}
_WIRE_TO_KIND: dict[str, SegmentKind] = {v: k for k, v in _KIND_TO_WIRE.items()}


class SegmentRenderer(Protocol):
    def render(self, markup: str) -> list[Segment]: ...

    def to_text(self, segments: Iterable[Segment]) -> str: ...


class PlainTextRenderer:
    def render(self, markup: str) -> list[Segment]:
        out: list[Segment] = []
        for i, line in enumerate(markup.split("\n")):
            if i:
                out.append(Segment(kind=SegmentKind.LINE_BREAK, text="\n"))
            if line:
                out.append(Segment(kind=SegmentKind.TEXT, text=line))
        return out

    def to_text(self, segments: Iterable[Segment]) -> str:
        parts: list[str] = []
        for seg in segments:
            if seg.kind is SegmentKind.LINE_BREAK:
                parts.append("\n")
            elif seg.kind is SegmentKind.LINK and not seg.text:
                parts.append(seg.link_target or "")
            else:
                parts.append(seg.text)
        return "".join(parts)


def meify(text: str) -> tuple[bool, str]:
    """
    Detect a "/me" action message.

    Returns `(is_action, text_without_prefix)`.
    """

    if text.startswith(_ME_PREFIX):
        return True, text[len(_ME_PREFIX) :]
    return False, text


def segments_to_proto(segments: Iterable[Segment]) -> list[Any]:
    out: list[Any] = []
    for seg in segments:
        pb = proto.Segment()
        pb.type = proto.SegmentType.Value(_KIND_TO_WIRE[seg.kind])
        pb.text = seg.text
        if seg.link_target:
            pb.link_target = seg.link_target
        if seg.bold:
            pb.bold = True
        if seg.italic:
            pb.italic = True
        if seg.strikethrough:
            pb.strikethrough = True
        if seg.underline:
            pb.underline = True
        out.append(pb)
    return out


def segments_from_proto(segments: Iterable[Any]) -> list[Segment]:
    out: list[Segment] = []
    for pb in segments:
        kind = _WIRE_TO_KIND.get(proto.SegmentType.Name(pb.type), SegmentKind.TEXT)
        out.append(
            Segment(
                kind=kind,
                text=pb.text,
                link_target=pb.link_target or None,
                bold=pb.bold,
                italic=pb.italic,
                strikethrough=pb.strikethrough,
                underline=pb.underline,
            )
        )
    return out
