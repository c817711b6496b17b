"""
NOTE: Local demo against a seeded SQLite file, no Postgres needed
NOTE: Part 1 calls the db_query tool facade directly (no LLM), part 2 runs full chat turns when GOOGLE_API_KEY is set
NOTE: Each chat gets its own AppContext with the identity found in its own conversation
NOTE: All chats share the same store instance. The store is the shared infrastructure, the identity is per-request data
NOTE: Use the LLM for what its good at: understanding natural language and writing the answer
NOTE: Enforce who can see what deterministically in Python code, not in the LLM
"""

import asyncio
import os
import tempfile
from pathlib import Path

from src.chat_service import run_chat
from src.db import SqlStore, seed_demo_data
from src.schemas import ChatMessage
from src.tools import run_database_query


async def main():
    db_path = Path(tempfile.mkdtemp()) / "techtrend_demo.db"
    store = SqlStore.from_url(f"sqlite:///{db_path}")
    seed_demo_data(store.engine)

    lookups = [
        ("order", "alice@example.com", []),
        ("ticket", "alice@example.com", [{"email": "bob@example.com"}]),
        ("customer", None, []),
        ("product", None, [{"productId": "101"}, {"productId": "105"}]),
        ("product", None, [{"productId": "999"}]),
    ]

    for i, (entity_type, email, identifiers) in enumerate(lookups):
        print(f"--- Lookup {i}: {entity_type} as {email or 'anonymous'} ---")
        output = await run_database_query(store, entity_type, email, identifiers)
        print(output.formatted)
        print("--------------------------------")

    if not os.getenv("GOOGLE_API_KEY"):
        print("GOOGLE_API_KEY is not set, skipping the chat demo.")
        store.close()
        return

    conversations = [
        [ChatMessage(role="user", content="hi")],
        [ChatMessage(role="user", content="Show my orders for alice@example.com")],
        [ChatMessage(role="user", content="Is the Laptop Pro (product 102) in stock?")],
        [ChatMessage(role="user", content="What's the status of my support tickets?")],
    ]

    results = await asyncio.gather(*(run_chat(store, conversation) for conversation in conversations))

    for conversation, result in zip(conversations, results):
        print(f"--- Customer: '{conversation[-1].content}' ---")
        print(f"Assistant: {result.text}")
        print("--------------------------------")

    store.close()


if __name__ == "__main__":
    asyncio.run(main())
