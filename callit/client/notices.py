from dataclasses import dataclass, field
from typing import Callable, List, Optional


@dataclass
class Notice:
    """A transient message for the user (a toast)."""
    title: str
    description: str
    variant: str = "default"  # default, destructive


@dataclass
class Notifier:
    """Collects notices and forwards them to an optional listener."""
    listener: Optional[Callable[[Notice], None]] = None
    notices: List[Notice] = field(default_factory=list)

    def _post(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self.listener:
            self.listener(notice)

    def success(self, description: str, title: str = "Success") -> None:
        self._post(Notice(title, description))

    def error(self, description: str, title: str = "Error") -> None:
        self._post(Notice(title, description, variant="destructive"))

    @property
    def errors(self) -> List[Notice]:
        return [notice for notice in self.notices if notice.variant == "destructive"]
