from textual.widgets import Static, Input
from textual.message import Message


class PromptPopup(Static):
    """A centered one-line prompt for an expression or a namespace name."""

    DEFAULT_CSS = """
    PromptPopup {
        display: none;
        width: 70;
        height: auto;
        background: #EBEEEE;
        border: solid #45d3ee;
        padding: 1 2;
    }

    PromptPopup .title {
        color: #191A1A;
        text-style: bold;
        margin-bottom: 1;
    }

    PromptPopup Input {
        background: #FFFFFF;
        color: #191A1A;
        border: solid #94bfc1;
    }
    """

    TITLES = {
        "eval": "Evaluate",
        "ns": "Switch Namespace",
    }

    class Submitted(Message):
        def __init__(self, mode: str, value: str) -> None:
            super().__init__()
            self.mode = mode
            self.value = value

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.mode = "eval"

    def compose(self):
        yield Static(self.TITLES["eval"], classes="title", id="prompt-title")
        yield Input(placeholder="(+ 1 2)", id="prompt-input")

    def on_input_submitted(self, event: Input.Submitted):
        event.stop()
        value = event.value.strip()
        self.display = False
        if value:
            self.post_message(self.Submitted(self.mode, value))

    def on_key(self, event):
        if event.key == "escape":
            self.display = False

    def show(self, mode: str, initial: str = ""):
        self.mode = mode
        self.query_one("#prompt-title", Static).update(self.TITLES.get(mode, mode))
        input_widget = self.query_one("#prompt-input", Input)
        input_widget.value = initial
        self.display = True
        input_widget.focus()
