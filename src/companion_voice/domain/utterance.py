class UtteranceBuffer:
    """Finalized transcript fragments of the user turn in progress."""

    def __init__(self) -> None:
        self._fragments: list[str] = []
        self._interim = ""

    @property
    def text(self) -> str:
        return " ".join(self._fragments).strip()

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def fragments(self) -> list[str]:
        return list(self._fragments)

    def is_empty(self) -> bool:
        return not self.text

    def append_final(self, text: str) -> None:
        self._fragments.append(text.strip())
        self._interim = ""

    def set_interim(self, text: str) -> None:
        self._interim = text.strip()

    def clear_interim(self) -> None:
        self._interim = ""

    def take(self) -> str:
        text = self.text
        self.clear()
        return text

    def clear(self) -> None:
        self._fragments.clear()
        self._interim = ""
