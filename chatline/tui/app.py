"""
chatline console. Textual front end over ChatSession.
History on the left (newest first), conversation and question on the right.
Entry point: chatline jack (alias: chat, tui)
"""
from __future__ import annotations
from typing import ClassVar
from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Header, Input, Label, ListItem, ListView, Static
from chatline.errors import CompletionError
from chatline.session import ChatSession
from chatline.storage.models import ROLE_ASSISTANT, ROLE_USER, Message

_SPEAKERS: dict[str, tuple[str, str]] = {
    ROLE_USER:      ("You:",       "bold red"),
    ROLE_ASSISTANT: ("Assistant:", "bold green"),
}


def render_transcript(messages: list[Message]) -> Text:
    """Render a transcript as styled Rich text, one block per message."""
    text = Text()
    for i, msg in enumerate(messages):
        if i:
            text.append("\n\n")
        label, style = _SPEAKERS.get(msg.role, (f"{msg.role}:", "dim"))
        text.append(label + "\n", style=style)
        text.append(msg.content)
    return text


class HistoryList(ListView):
    """Conversation titles with vi-style navigation."""
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("d", "app.delete_conversation", "Delete"),
        Binding("r", "app.rename_conversation", "Rename"),
    ]


class RenameScreen(ModalScreen[str | None]):
    """Prompt for a new conversation title."""
    DEFAULT_CSS = """
    RenameScreen {
        align: center middle;
    }
    #rename-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $accent;
        background: $surface;
    }
    """
    BINDINGS: ClassVar[list[Binding]] = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, title: str):
        super().__init__()
        self.current = title

    def compose(self) -> ComposeResult:
        with Vertical(id="rename-dialog"):
            yield Label("Rename conversation")
            yield Input(value=self.current, id="rename-input")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.dismiss(event.value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ChatlineApp(App):
    """Terminal chat client."""
    TITLE = "chatline"
    SUB_TITLE = "every conversation, kept"
    CSS = """
    #sidebar {
        width: 1fr;
    }
    #main {
        width: 3fr;
    }
    #new-chat {
        width: 100%;
    }
    #history, #conversation-scroll {
        height: 1fr;
        border: round $panel;
    }
    #question {
        height: 3;
    }
    """
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("f1", "new_chat", "New chat"),
        Binding("f2", "focus('history')", "History"),
        Binding("f3", "focus('conversation-scroll')", "Conversation"),
        Binding("f4", "focus('question')", "Question"),
        Binding("escape", "quit", "Quit"),
    ]

    def __init__(self, session: ChatSession, **kwargs):
        super().__init__(**kwargs)
        self.session = session
        self._live = Text()

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            with Vertical(id="sidebar"):
                yield Button("+ New chat", id="new-chat")
                yield HistoryList(id="history")
            with Vertical(id="main"):
                with VerticalScroll(id="conversation-scroll"):
                    yield Static(id="conversation")
                yield Input(placeholder="Ask anything, Enter to send", id="question")
        yield Footer()

    async def on_mount(self) -> None:
        self.query_one("#history").border_title = "History"
        self.query_one("#conversation-scroll").border_title = "Conversation"
        await self._refresh_history()
        self.query_one("#question", Input).focus()

    # ── View helpers ─────────────────────────────────────────────────────────

    def _show(self, text: Text) -> None:
        self._live = text
        self.query_one("#conversation", Static).update(text)
        self.query_one("#conversation-scroll", VerticalScroll).scroll_end(animate=False)

    async def _refresh_history(self, select: str | None = None) -> None:
        history = self.query_one("#history", HistoryList)
        await history.clear()
        titles = list(self.session.listing)
        await history.extend(ListItem(Label(Text(t)), name=t) for t in titles)
        if titles:
            index = titles.index(select) if select in titles else 0
            self.call_after_refresh(setattr, history, "index", index)
        else:
            self._show(Text())

    def _selected_title(self) -> str | None:
        item = self.query_one("#history", HistoryList).highlighted_child
        return item.name if item is not None else None

    # ── Events ───────────────────────────────────────────────────────────────

    def on_list_view_highlighted(self, event: ListView.Highlighted) -> None:
        if event.item is None or self.session.in_flight:
            return
        transcript = self.session.select_conversation(event.item.name)
        self._show(render_transcript(transcript))

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        self.query_one("#question", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "new-chat":
            self.action_new_chat()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "question" or self.session.in_flight:
            return
        content = event.value
        if not content.strip():
            return
        event.input.value = ""
        event.input.disabled = True

        text = self._live.copy()
        if text.plain:
            text.append("\n\n")
        text.append("You:\n", style="bold red")
        text.append(content)
        text.append("\n\nAssistant:\n", style="bold green")
        self._show(text)
        self.run_turn(content)

    def _on_fragment(self, fragment: str) -> None:
        self._live.append(fragment)
        self._show(self._live)

    @work(exclusive=True)
    async def run_turn(self, content: str) -> None:
        question = self.query_one("#question", Input)
        try:
            record = await self.session.submit_turn(content, on_fragment=self._on_fragment)
        except CompletionError as e:
            self.notify(str(e), title="Request failed", severity="error")
        else:
            if record is not None:
                await self._refresh_history(select=record.title)
        finally:
            question.disabled = False
            question.focus()

    # ── Actions ──────────────────────────────────────────────────────────────

    def action_new_chat(self) -> None:
        if self.session.in_flight:
            return
        self.session.new_conversation()
        self._show(Text())
        self.query_one("#question", Input).focus()

    async def action_delete_conversation(self) -> None:
        title = self._selected_title()
        if title is None or not self.session.delete_conversation(title):
            return
        await self._refresh_history(select=self.session.current_title)

    def action_rename_conversation(self) -> None:
        title = self._selected_title()
        if title is None or self.session.in_flight:
            return

        def done(new_title: str | None) -> None:
            if not new_title:
                return
            if not self.session.rename_conversation(title, new_title):
                self.notify(f"Could not rename to {new_title!r}", severity="warning")
                return
            self.run_worker(self._refresh_history(select=new_title.strip()))

        self.push_screen(RenameScreen(title), done)

    async def action_quit(self) -> None:
        await self.session.aclose()
        self.exit()
