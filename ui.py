"""
NiceGUI chat widget for the TechTrend support assistant.
Connects directly to the same chat service used by the API.

Run with: python ui.py
"""

import json
from nicegui import ui
from src.chat_service import run_chat_stream_events
from src.config import load_settings
from src.db import SqlStore
from src.logger import get_logger
from src.schemas import ChatMessage

logger = get_logger(__name__)

settings = load_settings()
store = SqlStore.from_url(settings.database_url, connect_timeout=settings.db_connect_timeout)


def parse_sse_event(raw: str) -> dict | None:
    """Strip the SSE 'data: ' prefix and parse the JSON payload."""
    line = raw.strip()
    if line.startswith("data: ") and line != "data: [DONE]":
        try:
            return json.loads(line[6:])
        except json.JSONDecodeError:
            return None
    return None


@ui.page("/")
def index():
    ui.query("body").style("background: #0f172a")

    # The conversation of this browser tab. Sent in full with every turn
    history: list[ChatMessage] = []

    with ui.column().classes("w-full max-w-2xl mx-auto px-4 py-10 gap-6"):

        # ── Header ──────────────────────────────────────────────────────────
        with ui.column().classes("gap-1"):
            ui.label("TechTrend Support").classes("text-3xl font-bold text-white")
            ui.label("Ask about your orders, support tickets or our products").classes("text-slate-400 text-sm")

        # ── Conversation ────────────────────────────────────────────────────
        chat_area = ui.column().classes("w-full gap-3")

        status_label = ui.label("").classes("text-slate-400 text-sm italic px-1 hidden")

        # ── Input ───────────────────────────────────────────────────────────
        with ui.card().classes("w-full bg-slate-800 border border-slate-700 rounded-xl p-4"):
            with ui.row().classes("w-full gap-3 items-end no-wrap"):
                message_input = (
                    ui.textarea(placeholder="e.g. Show my orders for alice@example.com")
                    .props('outlined dense autogrow rows="1"')
                    .classes("flex-1 text-white")
                )
                send_btn = ui.button(icon="send").props("unelevated round").classes("bg-indigo-600 text-white")

        async def on_send():
            content = (message_input.value or "").strip()
            if not content:
                return

            message_input.set_value("")
            send_btn.props("loading")
            history.append(ChatMessage(role="user", content=content))

            with chat_area:
                ui.chat_message(content, name="You", sent=True)
                with ui.chat_message(name="TechTrend Support"):
                    reply = ui.markdown("…")

            status_label.classes(remove="hidden")
            status_label.set_text("⚙ Thinking...")

            streamed = ""
            async for raw_event in run_chat_stream_events(store, list(history)):
                payload = parse_sse_event(raw_event)
                if payload is None:
                    continue

                if "status" in payload:
                    status_label.set_text(f"⚙ {payload['status']}")

                elif "delta" in payload:
                    streamed += payload["delta"]
                    reply.set_content(streamed)

                elif "final" in payload:
                    final = payload["final"]
                    reply.set_content(final.get("text", ""))
                    history.append(ChatMessage(role="assistant", content=final.get("text", "")))
                    logger.info("Chat turn complete", extra={"request_id": final.get("requestId")})

            status_label.classes(add="hidden")
            send_btn.props(remove="loading")

        send_btn.on_click(on_send)
        message_input.on("keydown.enter.prevent", on_send)


ui.run(
    title="TechTrend Support",
    port=8080,
    reload=False,
    dark=True,
)
