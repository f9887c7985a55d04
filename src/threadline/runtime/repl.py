import asyncio

from common.events import AssistantDeltaEvent, ErrorEvent, RetrievalStateEvent, SessionSelectedEvent
from threadline.errors import ChatError
from threadline.runtime.builtins import BuiltinCommands
from threadline.runtime.router import InputRouter


class ConsoleRenderer:
    """Prints streamed deltas for the active session as they arrive."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.session_id: str | None = None
        self.streamed = False

    def reset(self, session_id: str | None) -> None:
        self.session_id = session_id
        self.streamed = False

    def __call__(self, event) -> None:
        if isinstance(event, SessionSelectedEvent):
            self.session_id = event.session_id
        elif isinstance(event, AssistantDeltaEvent):
            if event.session_id != self.session_id or event.is_error:
                return
            if not self.streamed:
                print("\n", end="")
                self.streamed = True
            print(event.delta, end="", flush=True)
        elif isinstance(event, RetrievalStateEvent) and self.verbose:
            print(f"\n[{event.state}]", end="", flush=True)
        elif isinstance(event, ErrorEvent) and self.verbose:
            print(f"\n[error:{event.kind}] {event.message}")


class ChatREPL:
    def __init__(self, orchestrator, renderer: ConsoleRenderer, display_name: str = "threadline"):
        self.orchestrator = orchestrator
        self.renderer = renderer
        self.display_name = display_name
        self.builtins = BuiltinCommands(orchestrator)
        self.router = InputRouter(self.builtins)

    async def send(self, text: str) -> None:
        self.renderer.reset(self.orchestrator.active_session_id)
        if not await self.orchestrator.send(text):
            return
        reply = self.orchestrator.messages[-1] if self.orchestrator.messages else None
        if reply is None or reply.role != "assistant":
            return
        if reply.is_error:
            print(f"\n❌ {reply.text}")
        elif not self.renderer.streamed:
            print(f"\n{reply.text}")
        else:
            print()

    async def run(self, initial_message: str | None = None) -> None:
        print(f"🤖 {self.display_name} (session: {self.orchestrator.active_session_id or 'new'})")
        print("Commands: /help for all commands")

        try:
            await self.orchestrator.list_sessions()
        except ChatError as e:
            print(f"❌ {e.user_message()}")

        if initial_message:
            await self.send(initial_message)

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "\n> ")).strip()
            except EOFError:
                break

            if not user_input:
                continue

            route = self.router.route(user_input)
            if route.kind == "builtin":
                if not await self.builtins.handle(route.name, route.args):
                    break
                continue
            if route.kind == "unknown":
                print(f"Unknown command: /{route.name}. Type /help for available commands.")
                continue

            await self.send(route.args)
