"""Protocol definitions for dependency injection."""

from pathlib import Path
from typing import Any, Protocol


class AutomationSessionProtocol(Protocol):
    """The primitive actions the engine performs on the browser session.

    The automation channel only needs the lifecycle half (``is_started``,
    ``start``, ``quit``); login flows use the action half. Tests substitute
    an AsyncMock with the same shape.
    """

    @property
    def is_started(self) -> bool: ...

    async def start(self) -> None: ...

    async def quit(self) -> None: ...

    async def navigate(self, url: str) -> None: ...

    async def find_element(self, selector: str) -> Any | None: ...

    async def click(self, element: Any) -> None: ...

    async def type(self, element: Any, text: str) -> None: ...

    async def wait_until(self, selector: str, state: str = "visible", timeout_ms: int | None = None) -> Any: ...

    async def wait_for_url(self, url: str, timeout_ms: int | None = None) -> None: ...

    async def wait_for_detached(self, element: Any, timeout_ms: int | None = None) -> None: ...

    async def get_cookies(self) -> list[dict[str, Any]]: ...

    async def save_screenshot(self, path: Path) -> Path: ...

    async def save_page_source(self, path: Path) -> Path: ...
