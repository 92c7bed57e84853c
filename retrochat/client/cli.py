import asyncio, os, re, typer
from typing import Optional

from ..backend.identity import StaticIdentity
from ..backend.persistence import JsonConversationStore
from ..backend.remote import RemoteBackend
from ..config import Settings
from ..engine.sync import SyncEngine
from ..errors import IdentityError, ValidationError, WriteError
from ..models import Message, Participant

app = typer.Typer(help="Retro chat client (public lobby + direct messages)")

HELP = ("Commands:\n"
        "  <text>                     send to the current conversation\n"
        "  /dm @<display_name> [text] open a direct conversation (and send)\n"
        "  /public                    back to the public lobby\n"
        "  /close @<display_name>     remove a direct conversation\n"
        "  /who [search]              participants online now\n"
        "  /chats                     open conversations and unread counts\n"
        "  /resync                    refetch the current conversation\n"
        "  /status                    connection status per channel\n"
        "  /quit")


def format_message(engine: SyncEngine, m: Message) -> str:
    sender = engine.display_name(m.sender_id)
    if m.is_direct:
        other = m.recipient_id if m.sender_id == engine.local_id else m.sender_id
        return f"[DM {engine.display_name(other)}] {sender}: {m.body}"
    return f"[PUBLIC] {sender}: {m.body}"


def make_printer(engine: SyncEngine):
    """Listener printing engine events to the terminal.

    Presence changes are printed as differences to the last valid roster;
    the first roster after (re)connecting only sets the baseline.
    """
    online_before = None

    def on_event(event: str, payload):
        nonlocal online_before
        if event == "message":
            suffix = " (sending)" if payload.provisional else ""
            print(format_message(engine, payload) + suffix)
        elif event == "presence":
            if not engine.presence_valid:
                online_before = None
                return
            online_now = set(payload) - {engine.local_id}
            if online_before is not None:
                for pid in sorted(online_now - online_before, key=engine.display_name):
                    print(f"[online] {engine.display_name(pid)}")
                for pid in sorted(online_before - online_now, key=engine.display_name):
                    print(f"[offline] {engine.display_name(pid)}")
            online_before = online_now
        elif event == "messages_reset":
            label = "public lobby" if payload.is_public else engine.display_name(payload.other_id)
            print(f"--- now viewing {label} ---")
        elif event == "unread":
            other, count = payload
            if count:
                print(f"[unread] {engine.display_name(other)}: {count}")
        elif event == "status":
            print(f"[status] {payload}")
        elif event == "send_failed":
            text, reason = payload
            print(f"[error] not sent ({reason}): {text}")
    return on_event


async def resolve_name(engine: SyncEngine, name: str) -> Optional[str]:
    """Resolve display name to participant ID.

    Prefers an exact (case-insensitive) match, falls back to the first
    substring match and refreshes the directory once if nothing matches.

    Args:
        engine (SyncEngine): Running engine holding the participant directory
        name (str): Display name, with or without a leading @

    Returns:
        str | None: Participant ID if found
    """
    name = name.lstrip("@").lower()
    for attempt in range(2):
        people = [p for p in engine.participants if p.id != engine.local_id]
        exact = [p for p in people if p.display_name.lower() == name]
        if exact:
            return exact[0].id
        partial = [p for p in people if name in p.display_name.lower()]
        if partial:
            print(f"[hint] Using first match: {partial[0].display_name}")
            return partial[0].id
        if attempt == 0:
            await engine.refresh_participants()
    print("[warn] No user found")
    return None


async def handle_line(engine: SyncEngine, line: str) -> bool:
    """Run one line of user input; returns False when the user quits."""
    line = line.strip()
    if not line:
        return True
    if line in {"/quit", "/exit"}:
        return False
    if line in {"/help", "help"}:
        print(HELP)
        return True
    if line == "/public":
        await engine.open_public()
        return True
    if line == "/resync":
        n = await engine.resync()
        print(f"[resync] {n} messages fetched")
        return True
    if line == "/status":
        states = ", ".join(f"{name}={state.value}" for name, state in engine.channel_states.items())
        print(f"[status] {engine.status} ({states})")
        return True
    if line == "/chats":
        unread = engine.unread
        ids = sorted(engine.active_conversations, key=lambda pid: engine.display_name(pid).lower())
        if not ids:
            print("[chats] No open conversations")
        for pid in ids:
            marker = "*" if pid in engine.online else " "
            print(f" {marker} {engine.display_name(pid)} unread={unread.get(pid, 0)}")
        return True

    m = re.match(r"^/who(?:\s+(.*))?$", line)
    if m:
        if not engine.presence_valid:
            print("[who] Presence unknown until the roster syncs")
            return True
        people = engine.online_participants(m.group(1) or "")
        if not people:
            print("[who] Nobody else online")
        for p in people:
            print(f" - {p.display_name}")
        return True

    m = re.match(r"^/close\s+@?(\S+)$", line)
    if m:
        target_id = await resolve_name(engine, m.group(1))
        if target_id:
            await engine.remove_conversation(target_id)
            print(f"[chats] Closed conversation with {engine.display_name(target_id)}")
        return True

    m = re.match(r"^/dm\s+@?(\S+)(?:\s+(.+))?$", line)
    if m:
        target_id = await resolve_name(engine, m.group(1))
        if target_id:
            await engine.open_conversation(target_id)
            if m.group(2):
                await send_text(engine, m.group(2))
        return True

    if line.startswith("/"):
        print('Type "/help" for commands.')
        return True

    await send_text(engine, line)
    return True


async def send_text(engine: SyncEngine, text: str):
    try:
        await engine.send(text)
    except ValidationError as e:
        print(f"[error] {e}")
    except WriteError:
        # reported by the send_failed listener
        pass


async def sign_in(backend: RemoteBackend, display_name: str, register: bool) -> Optional[Participant]:
    loop = asyncio.get_running_loop()
    try:
        return await backend.login(display_name, register)
    except IdentityError as e:
        print(f"Login failed: {e}")
        if register:
            return None
    answer = await loop.run_in_executor(None, input, "Would you like to register as a new user? (y/n): ")
    if answer.strip().lower() != "y":
        return None
    try:
        return await backend.login(display_name, True)
    except IdentityError as e:
        print(f"Error during registration: {e}")
        return None


async def _run(display_name: str, settings: Settings, register: bool = False):
    """Main client loop.

    Signs in, starts the sync engine and reads commands from stdin until
    /quit or end of input.

    Args:
        display_name (str): User's display name (will prompt if empty)
        settings (Settings): Server address, intervals and data directory
        register (bool): True to register a new user, False to log in first

    Side Effects:
        - Connects to the gRPC store server
        - Reads/writes the active conversations file under data_dir
        - Announces presence until the client exits
    """
    loop = asyncio.get_running_loop()
    if not display_name:
        display_name = (await loop.run_in_executor(None, input, "Enter your display name: ")).strip()

    backend = RemoteBackend(settings.target, reconnect_delay=settings.reconnect_delay,
                            call_timeout=settings.write_timeout)
    try:
        me = await sign_in(backend, display_name, register)
        if me is None:
            return
        print(f"Logged in as {me.display_name} ({me.id})")

        store = JsonConversationStore(os.path.join(settings.data_dir, "conversations"))
        engine = SyncEngine(backend, backend, backend, store, StaticIdentity(me), settings)
        engine.add_listener(make_printer(engine))
        await engine.start()
        print('Type "/help" for commands.')
        try:
            while True:
                try:
                    line = await loop.run_in_executor(None, input, "")
                except EOFError:
                    break
                if not await handle_line(engine, line):
                    break
        finally:
            await engine.stop()
    finally:
        await backend.close()


@app.command("run")
def run_cmd(
    name: str = "",
    host: Optional[str] = None,
    port: Optional[int] = None,
    register: bool = False,
    poll_interval: Optional[float] = None,
    data_dir: Optional[str] = None,
):
    """
    Run the chat client.

    Args:
        name: Display name to use
        host: Server hostname (default from RETROCHAT_HOST)
        port: Server port (default from RETROCHAT_PORT)
        register: If True, register as new user. If False, try to login first
        poll_interval: Seconds between two fallback polls
        data_dir: Directory for the active conversations file
    """
    settings = Settings.from_env(host=host, port=port, poll_interval=poll_interval, data_dir=data_dir)
    asyncio.run(_run(name, settings, register))


if __name__ == "__main__":
    app()
