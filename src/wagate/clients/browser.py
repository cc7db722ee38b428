"""
Playwright-driven WhatsApp Web client.

Each client owns one persistent Chromium context whose user data directory is
``{sessions_root}/{session_id}``. Keeping that directory is what lets a
session come back after a restart without scanning a new QR code.

A monitor task polls the page and emits lifecycle events:

- QR canvas visible: ``qr`` with the QR reference (or a PNG data URL)
- chat list visible: ``authenticated`` (after a QR) then ``ready``
- chat list gone again, or the page closed: ``disconnected``
- no login after too many QR refreshes: ``auth_failure``
"""

import asyncio
import base64
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from playwright.async_api import async_playwright

from wagate.clients.base import (
    EVENT_AUTH_FAILURE,
    EVENT_AUTHENTICATED,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ChatClient,
    ChatSummary,
    ClientFactory,
    IncomingMessage,
)
from wagate.config import DEFAULT_BROWSER_ARGS, DEFAULT_USER_AGENT
from wagate.logger import get_logger

logger = get_logger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

LOGGED_IN_SELECTORS = ('[data-testid="chat-list"]', 'div[data-tab="3"]', "#side")
QR_CONTAINER_SELECTOR = "div[data-ref]"
QR_CANVAS_SELECTORS = (
    'canvas[aria-label*="QR"]',
    'canvas[aria-label*="qr"]',
    '[data-testid="qrcode"]',
    "div[data-ref] canvas",
)
CHAT_ITEM_SELECTOR = 'div[data-testid="cell-frame-container"]'
UNREAD_BADGE_SELECTOR = '[data-testid="icon-unread-count"]'
INVALID_CHAT_POPUP_SELECTOR = 'div[data-testid="popup-controls-ok"]'
SEND_BUTTON_SELECTORS = (
    '[data-testid="send"]',
    'span[data-icon="send"]',
    'button[aria-label="Send"]',
)
COMPOSE_BOX_SELECTORS = (
    '[data-testid="conversation-compose-box-input"]',
    'footer div[contenteditable="true"]',
)

MONITOR_INTERVAL = 2.0
MAX_QR_REFRESHES = 5

# Forwards incoming message bubbles of the open chat to the exposed binding.
MESSAGE_OBSERVER_JS = """
() => {
  if (window.__wagateObserver) return;
  const seen = new WeakSet();
  window.__wagateObserver = new MutationObserver(() => {
    document.querySelectorAll('div.message-in').forEach((node) => {
      if (seen.has(node)) return;
      seen.add(node);
      const text = node.querySelector('span.selectable-text');
      const meta = node.querySelector('div.copyable-text');
      const header = document.querySelector('#main header span[title]');
      const groupIcon = document.querySelector('#main header span[data-icon="default-group"]');
      window.__wagateOnMessage({
        body: text ? text.innerText : '',
        meta: meta ? meta.getAttribute('data-pre-plain-text') : '',
        chat: header ? header.getAttribute('title') : '',
        group: !!groupIcon,
      });
    });
  });
  window.__wagateObserver.observe(document.body, {childList: true, subtree: true});
}
"""


class BrowserChatClient(ChatClient):
    """WhatsApp Web session backed by a persistent Chromium profile."""

    def __init__(
        self,
        session_id: str,
        sessions_root: Path,
        headless: bool = True,
        browser_args: Optional[list[str]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        navigation_timeout_ms: int = 60000,
    ):
        super().__init__(session_id)
        self.user_data_dir = Path(sessions_root) / session_id
        self.headless = headless
        self.browser_args = list(browser_args or DEFAULT_BROWSER_ARGS)
        self.user_agent = user_agent
        self.navigation_timeout_ms = navigation_timeout_ms

        self._playwright = None
        self._context = None
        self._page = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._connected = False
        self._last_qr: Optional[str] = None
        self._qr_count = 0

    async def start(self) -> None:
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{self.session_id}] Launching browser (profile: {self.user_data_dir})")

        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.user_data_dir),
            headless=self.headless,
            args=self.browser_args,
            user_agent=self.user_agent,
            viewport={"width": 1280, "height": 800},
        )
        self._page = (
            self._context.pages[0] if self._context.pages else await self._context.new_page()
        )
        self._page.on("close", lambda _page: self._on_page_closed())

        await self._page.goto(
            WHATSAPP_WEB_URL,
            wait_until="domcontentloaded",
            timeout=self.navigation_timeout_ms,
        )
        self._monitor_task = asyncio.create_task(self._monitor())

    async def stop(self) -> None:
        self._stopping = True
        if self._monitor_task and not self._monitor_task.done():
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass

        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None
        logger.info(f"[{self.session_id}] Browser closed")

    # -- Monitoring ----------------------------------------------------------

    async def _monitor(self) -> None:
        while not self._stopping:
            try:
                await self._poll_page()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[{self.session_id}] Page check failed: {e}")

            if self._qr_count > MAX_QR_REFRESHES and not self._connected:
                await self._emit(EVENT_AUTH_FAILURE, "QR code was not scanned in time")
                return

            await asyncio.sleep(MONITOR_INTERVAL)

    async def _poll_page(self) -> None:
        page = self._page
        if page is None:
            return

        logged_in = await self._any_visible(LOGGED_IN_SELECTORS)

        if logged_in and not self._connected:
            self._connected = True
            if self._last_qr is not None:
                await self._emit(EVENT_AUTHENTICATED)
            await self._watch_messages()
            await self._emit(EVENT_READY)
            return

        if not logged_in and self._connected:
            self._connected = False
            if await self._read_qr() is not None:
                await self._emit(EVENT_DISCONNECTED, "LOGOUT")
                self._stopping = True
            return

        if not logged_in:
            qr = await self._read_qr()
            if qr is not None and qr != self._last_qr:
                self._last_qr = qr
                self._qr_count += 1
                logger.info(f"[{self.session_id}] QR code captured ({self._qr_count})")
                await self._emit(EVENT_QR, qr)

    async def _any_visible(self, selectors) -> bool:
        for selector in selectors:
            if await self._page.locator(selector).count() > 0:
                return True
        return False

    async def _read_qr(self) -> Optional[str]:
        container = self._page.locator(QR_CONTAINER_SELECTOR).first
        if await container.count() > 0:
            ref = await container.get_attribute("data-ref")
            if ref:
                return ref

        for selector in QR_CANVAS_SELECTORS:
            element = self._page.locator(selector).first
            if await element.count() == 0:
                continue
            box = await element.bounding_box()
            if box and box["width"] > 50 and box["height"] > 50:
                png = await element.screenshot()
                return f"data:image/png;base64,{base64.b64encode(png).decode()}"
        return None

    async def _watch_messages(self) -> None:
        try:
            await self._page.expose_function("__wagateOnMessage", self._on_dom_message)
        except Exception as e:
            logger.debug(f"[{self.session_id}] Message binding already present: {e}")
        await self._page.evaluate(MESSAGE_OBSERVER_JS)

    async def _on_dom_message(self, payload: dict[str, Any]) -> None:
        body = (payload or {}).get("body") or ""
        if not body:
            return
        sender = payload.get("chat") or "unknown"
        message = IncomingMessage(
            sender=sender, body=body, is_group=bool(payload.get("group"))
        )
        await self._emit(EVENT_MESSAGE, message)

    def _on_page_closed(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        self._connected = False
        asyncio.ensure_future(self._emit(EVENT_DISCONNECTED, "page closed"))

    # -- Operations ----------------------------------------------------------

    def _require_page(self):
        if self._page is None or not self._connected:
            raise RuntimeError("Browser session is not connected")
        return self._page

    async def send_message(self, chat_id: str, body: str) -> None:
        page = self._require_page()
        if not chat_id.endswith("@c.us"):
            raise RuntimeError(f"Sending to {chat_id} is not supported by the browser client")

        phone = chat_id.split("@", 1)[0]
        await page.goto(
            f"{WHATSAPP_WEB_URL}/send?phone={phone}&text={quote(body)}",
            wait_until="domcontentloaded",
            timeout=self.navigation_timeout_ms,
        )
        await page.wait_for_selector(
            f'{COMPOSE_BOX_SELECTORS[1]}, {INVALID_CHAT_POPUP_SELECTOR}', timeout=30000
        )

        popup = page.locator(INVALID_CHAT_POPUP_SELECTOR)
        if await popup.count() > 0:
            await popup.first.click()
            raise RuntimeError(f"Chat not found for {chat_id}")

        for selector in SEND_BUTTON_SELECTORS:
            button = page.locator(selector)
            if await button.count() > 0:
                await button.first.click()
                return

        for selector in COMPOSE_BOX_SELECTORS:
            box = page.locator(selector)
            if await box.count() > 0:
                await box.first.press("Enter")
                return

        raise RuntimeError("Could not find the send button or compose box")

    async def list_chats(self) -> list[ChatSummary]:
        page = self._require_page()
        items = page.locator(CHAT_ITEM_SELECTOR)
        chats = []
        for i in range(await items.count()):
            item = items.nth(i)
            title = item.locator("span[title]").first
            if await title.count() == 0:
                continue
            name = await title.get_attribute("title") or ""

            unread = 0
            badge = item.locator(UNREAD_BADGE_SELECTOR)
            if await badge.count() > 0:
                text = (await badge.first.inner_text()).strip()
                unread = int(text) if text.isdigit() else 1

            is_group = await item.locator('span[data-icon="default-group"]').count() > 0
            chats.append(
                ChatSummary(chat_id=name, name=name, is_group=is_group, unread_count=unread)
            )
        return chats

    async def get_chat(self, chat_id: str) -> Optional[ChatSummary]:
        target = chat_id.split("@", 1)[0]
        for chat in await self.list_chats():
            if chat.chat_id in (chat_id, target) or chat.name == target:
                return chat
        return None


def browser_client_factory(config) -> ClientFactory:
    """Build a ClientFactory producing BrowserChatClients from app config."""

    def factory(session_id: str) -> BrowserChatClient:
        return BrowserChatClient(
            session_id,
            sessions_root=config.sessions_path,
            headless=config.browser_headless,
            browser_args=config.browser_args,
            user_agent=config.browser_user_agent,
            navigation_timeout_ms=config.browser_navigation_timeout_ms,
        )

    return factory
