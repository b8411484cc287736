"""
Simple interactive CLI for pygchat.

Demonstrates:
- connecting with an existing auth token
- roster sync (DMs, spaces, presence)
- receiving and sending messages, with attachments
- conversation management (join, rename, archive, leave)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os

from pygchat import ConversationId, GoogleChatClient, PygchatError
from pygchat.models import ConnectionUpdate, PresenceRecord, ReceivedMessage, TypingNotice


async def _ainput(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


def _short(s: str | None, n: int = 80) -> str:
    if not s:
        return ""
    return s if len(s) <= n else (s[: n - 3] + "...")


async def main() -> None:
    ap = argparse.ArgumentParser(prog="simple_cli.py")
    ap.add_argument("--token", default=os.environ.get("PYGCHAT_TOKEN"), help="auth token (or $PYGCHAT_TOKEN)")
    ap.add_argument("--debug", action="store_true", help="debug logging")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    if not args.token:
        ap.error("an auth token is required")

    client = GoogleChatClient(auth_token=args.token)

    def resolve(token: str) -> ConversationId:
        conv = client.session.directory.lookup(token)
        return conv or ConversationId.space(token)

    async def on_update(update: ConnectionUpdate) -> None:
        if update.connection:
            print("connection:", update.connection)
        if update.last_disconnect:
            print("  reason:", update.last_disconnect)

    async def on_msg(msg: ReceivedMessage) -> None:
        prefix = "* " if msg.is_action else ""
        print(f"\n[rx] {msg.conversation_id} {msg.sender_id}: {prefix}{_short(msg.text, 200)}")
        if msg.attachment_ids:
            print(f"     attachments: {', '.join(msg.attachment_ids)}")

    async def on_typing(notice: TypingNotice) -> None:
        print(f"\n[typing] {notice.conversation_id} {notice.user_id}: {notice.state.value}")

    async def on_presence(record: PresenceRecord) -> None:
        text = f" ({record.status_text})" if record.status_text else ""
        print(f"\n[presence] {record.user_id}: {record.status.value}{text}")

    client.on("connection.update", on_update)
    client.on("message.received", on_msg)
    client.on("typing", on_typing)
    client.on("buddy.presence", on_presence)

    await client.connect()

    print(
        "\nCommands: help, chats, rooms, im <user> <text>, send <conv> <text>, attach <conv> <path> [text], "
        "join <space>, rename <conv> <name>, invite <conv> <user>, archive <conv>, leave <conv>, "
        "status <available|away|do_not_disturb> [message], whois <user>, me, quit\n"
    )

    while True:
        try:
            line = (await _ainput("> ")).strip()
        except (EOFError, KeyboardInterrupt):
            line = "quit"

        if not line:
            continue

        cmd, *rest = line.split(" ", 1)
        cmd = cmd.lower()
        argstr = rest[0] if rest else ""
        parts = argstr.split(" ", 1) if argstr else []

        if cmd in ("quit", "exit"):
            break

        try:
            if cmd == "help":
                print("chats  (DMs and spaces known to this session)")
                print("rooms  (recent spaces from the server)")
                print("im <user> <text>")
                print("send <conv> <text>")
                print("attach <conv> <path> [text]")
                print("join <space> / rename <conv> <name> / invite <conv> <user>")
                print("archive <conv> / leave <conv>")
                print("status <available|away|do_not_disturb> [message]")
                print("whois <user>")
                print("me")
                print("quit")
            elif cmd == "me":
                print("me:", client.self_user_id)
            elif cmd == "chats":
                d = client.session.directory
                for user_id, conv in d.dm_items():
                    print(f"- dm {conv} with {user_id}")
                for conv in d.groups():
                    snap = d.snapshot(conv)
                    print(f"- space {conv} {snap.name if snap else ''!r}")
            elif cmd == "rooms":
                for room in await client.list_rooms():
                    print(f"- {room.conversation_id} {room.name or '(unnamed)'!r}: {room.users}")
            elif cmd == "im":
                if len(parts) < 2:
                    print("usage: im <user> <text>")
                    continue
                await client.send_im(parts[0], parts[1])
            elif cmd == "send":
                if len(parts) < 2:
                    print("usage: send <conv> <text>")
                    continue
                await client.send_message(resolve(parts[0]), parts[1])
            elif cmd == "attach":
                if len(parts) < 2:
                    print("usage: attach <conv> <path> [text]")
                    continue
                path, _, text = parts[1].partition(" ")
                await client.send_message(resolve(parts[0]), text, attachment=path)
            elif cmd == "join":
                page = await client.join_chat(ConversationId.space(argstr))
                print(f"joined, {page.applied} event(s) applied")
            elif cmd == "rename":
                if len(parts) < 2:
                    print("usage: rename <conv> <name>")
                    continue
                await client.rename_conversation(resolve(parts[0]), parts[1])
            elif cmd == "invite":
                if len(parts) < 2:
                    print("usage: invite <conv> <user>")
                    continue
                await client.invite(resolve(parts[0]), parts[1])
            elif cmd == "archive":
                await client.archive_conversation(resolve(argstr))
            elif cmd == "leave":
                await client.leave_or_kick(resolve(argstr))
            elif cmd == "status":
                if not parts:
                    print("usage: status <available|away|do_not_disturb> [message]")
                    continue
                await client.set_presence(parts[0], parts[1] if len(parts) > 1 else None)
            elif cmd == "whois":
                info = await client.get_user_info(argstr)
                print(info or "(unknown user)")
            else:
                print("unknown command; try 'help'")
        except (PygchatError, ValueError) as e:
            print("error:", e)

    await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
