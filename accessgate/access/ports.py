"""
Host collaborators of the access engine.
The engine only talks to these interfaces; DOM, dialogs, cookies and transports live behind them.
"""
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

Unlisten = Callable[[], None]
JsonTree = dict[str, Any]
UrlVar = str | Callable[[str], Any]


class ContentElement(ABC):
    """Element carrying the `amp-access` expression attribute."""

    @abstractmethod
    def get_attribute(self, name: str) -> str | None:
        raise NotImplementedError

    def has_attribute(self, name: str) -> bool:
        return self.get_attribute(name) is not None

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_attribute(self, name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def template_elements(self) -> list[Any]:
        """Descendants marked with `amp-access-template`."""
        raise NotImplementedError


class HostDocument(ABC):
    """The document (and its viewer) the engine gates."""

    @abstractmethod
    def location_url(self) -> str:
        """URL the document is served from (may be a proxy cache URL)."""
        raise NotImplementedError

    @abstractmethod
    def source_origin(self) -> str:
        """Publisher origin, also behind a proxy."""
        raise NotImplementedError

    @abstractmethod
    async def when_ready(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_visible(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def on_visibility_changed(self, handler: Callable[[], None]) -> Unlisten:
        raise NotImplementedError

    @abstractmethod
    def on_scroll(self, handler: Callable[[], None]) -> Unlisten:
        raise NotImplementedError

    @abstractmethod
    def on_click_once(self, handler: Callable[[], None]) -> Unlisten:
        """Listen for a single tap/click on the document; auto-removed after firing."""
        raise NotImplementedError

    @abstractmethod
    def toggle_class(self, name: str, on: bool) -> None:
        """Toggle a class on the document root (loading/error indicators)."""
        raise NotImplementedError

    @abstractmethod
    def access_elements(self) -> list[ContentElement]:
        raise NotImplementedError

    async def mutate_element(self, element: ContentElement, mutator: Callable[[], None]) -> None:
        """Run a DOM mutation; hosts with a mutation scheduler override this."""
        mutator()


class AuthorizationTransport(ABC):
    @abstractmethod
    async def fetch_json(self, url: str) -> JsonTree:
        """GET with credentials; raises AuthorizationError on transport/HTTP failure."""
        raise NotImplementedError

    @abstractmethod
    async def send_signal(self, url: str) -> None:
        """POST an empty form body with credentials; raises on failure."""
        raise NotImplementedError


class ReaderIdSource(ABC):
    @abstractmethod
    async def get(self, scope: str, create_if_missing: bool = True) -> str | None:
        """Reader id for scope; None only when missing and create_if_missing is False."""
        raise NotImplementedError


class UrlExpander(ABC):
    @abstractmethod
    async def expand(self, url: str, variables: Mapping[str, UrlVar]) -> str:
        raise NotImplementedError


class TemplateRenderer(ABC):
    @abstractmethod
    async def render(self, element: ContentElement, template: Any, response: JsonTree) -> None:
        """Re-render one `amp-access-template` descendant of element with response."""
        raise NotImplementedError


class LoginDialog(ABC):
    @abstractmethod
    async def open(self, url: str) -> str:
        """Open the login dialog and return its query-string result once closed."""
        raise NotImplementedError


class BroadcastChannel(ABC):
    """Message transport between documents of one viewer session."""

    @abstractmethod
    async def publish(self, message: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, handler: Callable[[Mapping[str, Any]], Awaitable[None] | None]) -> Unlisten:
        raise NotImplementedError
