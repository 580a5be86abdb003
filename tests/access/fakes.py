"""In-memory host collaborators for engine tests."""
import asyncio
from typing import Any

from accessgate.access.applier import ACCESS_ATTR, HIDE_ATTR
from accessgate.access.ports import (
    AuthorizationTransport,
    ContentElement,
    HostDocument,
    LoginDialog,
    TemplateRenderer,
)


class FakeElement(ContentElement):
    def __init__(self, expr: str, hidden: bool = False, templates: list | None = None) -> None:
        self.attrs: dict[str, str] = {ACCESS_ATTR: expr}
        if hidden:
            self.attrs[HIDE_ATTR] = ""
        self.templates = templates or []

    def get_attribute(self, name):
        return self.attrs.get(name)

    def set_attribute(self, name, value):
        self.attrs[name] = value

    def remove_attribute(self, name):
        self.attrs.pop(name, None)

    def template_elements(self):
        return list(self.templates)

    @property
    def hidden(self) -> bool:
        return HIDE_ATTR in self.attrs


class FakeDocument(HostDocument):
    def __init__(
        self,
        url: str = "https://pub.example/article",
        origin: str = "https://pub.example",
        visible: bool = True,
        elements: list[FakeElement] | None = None,
    ) -> None:
        self.url = url
        self.origin = origin
        self.visible = visible
        self.elements = elements or []
        self.classes: set[str] = set()
        self.mutations = 0
        self.visibility_handlers: list = []
        self.scroll_handlers: list = []
        self.click_handlers: list = []

    def location_url(self):
        return self.url

    def source_origin(self):
        return self.origin

    async def when_ready(self):
        return None

    def is_visible(self):
        return self.visible

    @staticmethod
    def _listen(handlers: list, handler) -> Any:
        handlers.append(handler)

        def unlisten():
            if handler in handlers:
                handlers.remove(handler)

        return unlisten

    def on_visibility_changed(self, handler):
        return self._listen(self.visibility_handlers, handler)

    def on_scroll(self, handler):
        return self._listen(self.scroll_handlers, handler)

    def on_click_once(self, handler):
        return self._listen(self.click_handlers, handler)

    def toggle_class(self, name, on):
        if on:
            self.classes.add(name)
        else:
            self.classes.discard(name)

    def access_elements(self):
        return list(self.elements)

    async def mutate_element(self, element, mutator):
        self.mutations += 1
        mutator()

    # ----- test drivers -----

    def set_visible(self, visible: bool) -> None:
        self.visible = visible
        for handler in list(self.visibility_handlers):
            handler()

    def scroll(self) -> None:
        for handler in list(self.scroll_handlers):
            handler()

    def click(self) -> None:
        handlers, self.click_handlers = self.click_handlers, []
        for handler in handlers:
            handler()

    @property
    def armed_listeners(self) -> int:
        return len(self.scroll_handlers) + len(self.click_handlers)


class FakeTransport(AuthorizationTransport):
    def __init__(self, response: dict | None = None) -> None:
        self.responses: list[Any] = [response if response is not None else {}]
        self.delay = 0.0
        self.fetched: list[str] = []
        self.signals: list[str] = []
        self.signal_error: Exception | None = None

    async def fetch_json(self, url):
        self.fetched.append(url)
        result = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(result, tuple):
            delay, result = result
            await asyncio.sleep(delay)
        elif self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(result, Exception):
            raise result
        return result

    async def send_signal(self, url):
        if self.signal_error is not None:
            raise self.signal_error
        self.signals.append(url)


class FakeDialog(LoginDialog):
    def __init__(self, result: str = "success=true") -> None:
        self.result: Any = result
        self.opened: list[str] = []
        self.gate: asyncio.Event | None = None

    async def open(self, url):
        self.opened.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeRenderer(TemplateRenderer):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.rendered: list = []

    async def render(self, element, template, response):
        if self.fail:
            raise RuntimeError("template not found")
        self.rendered.append((template, dict(response)))


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)
