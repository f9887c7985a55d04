from threadline.errors import ChatError


def _short(session_id: str) -> str:
    return session_id[:8]


class BuiltinCommands:
    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "help": self.cmd_help,
            "new": self.cmd_new,
            "sessions": self.cmd_sessions,
            "switch": self.cmd_switch,
            "delete": self.cmd_delete,
            "history": self.cmd_history,
        }

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    async def handle(self, name: str, args: str) -> bool:
        handler = self._handlers.get(name)
        if not handler:
            return True
        try:
            return await handler(args)
        except ChatError as e:
            print(f"❌ {e.user_message()}")
            return True

    def _resolve(self, ref: str) -> str | None:
        sessions = self.orchestrator.store.sessions
        if ref.isdigit() and 1 <= int(ref) <= len(sessions):
            return sessions[int(ref) - 1].id
        matches = [s.id for s in sessions if s.id.startswith(ref)]
        if len(matches) == 1:
            return matches[0]
        return ref if self.orchestrator.store.get(ref) else None

    async def cmd_quit(self, args: str) -> bool:
        print("👋 Goodbye!")
        return False

    async def cmd_help(self, args: str) -> bool:
        print("Commands:")
        print("  /new                 Start a new conversation")
        print("  /sessions            List conversations")
        print("  /switch <n|id>       Open a conversation")
        print("  /delete <n|id>       Delete a conversation")
        print("  /history             Show the current conversation")
        print("  /quit                Exit")
        return True

    async def cmd_new(self, args: str) -> bool:
        session = await self.orchestrator.create_session()
        print(f"✅ Started session {_short(session.id)}")
        return True

    async def cmd_sessions(self, args: str) -> bool:
        sessions = await self.orchestrator.list_sessions()
        if not sessions:
            print("No conversations yet")
            return True
        active = self.orchestrator.active_session_id
        for idx, session in enumerate(sessions, start=1):
            marker = "*" if session.id == active else " "
            print(f" {marker} {idx:>2}. Session {_short(session.id)}")
        return True

    async def cmd_switch(self, args: str) -> bool:
        if not args:
            print("Usage: /switch <n|session id>")
            return True
        session_id = self._resolve(args)
        if session_id is None:
            print(f"❌ Unknown session: {args}")
            return True
        await self.orchestrator.open_session(session_id)
        print(f"✅ Switched to session {_short(session_id)}")
        await self.cmd_history("")
        return True

    async def cmd_delete(self, args: str) -> bool:
        if not args:
            print("Usage: /delete <n|session id>")
            return True
        session_id = self._resolve(args)
        if session_id is None:
            print(f"❌ Unknown session: {args}")
            return True
        await self.orchestrator.delete_session(session_id)
        print(f"✅ Deleted session {_short(session_id)}")
        return True

    async def cmd_history(self, args: str) -> bool:
        messages = self.orchestrator.messages
        if not messages:
            print("No messages in this conversation")
            return True
        for message in messages:
            who = "you" if message.role == "user" else "assistant"
            prefix = "❌ " if message.is_error else ""
            print(f"\n[{who}] {prefix}{message.text}")
        return True
