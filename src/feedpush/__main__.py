"""Entry point for the feedpush console: python -m feedpush"""

import asyncio
import json
import logging
import uuid

import httpx
from langchain_core.messages import HumanMessage

from feedpush.agent import create_agent
from feedpush.config import Settings
from feedpush.database import Database
from feedpush.hub import ConnectionHub
from feedpush.notifier import NEW_FEED, NEW_ITEMS, NotificationDispatcher, Session
from feedpush.poller import start_polling
from feedpush.scheduler import FetchScheduler
from feedpush.subscriptions import SubscriptionIndex
from feedpush.tools import create_tools

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("langchain").setLevel(logging.WARNING)


class ConsoleSession(Session):
    """Prints pushed notifications to the terminal."""

    async def send(self, text: str) -> None:
        message = json.loads(text)
        data = message["data"]
        if message["id"] == NEW_ITEMS:
            print(f"\n[{len(data['items'])} new items in feed {data['feed_id']}]")
            for item in data["items"]:
                print(f"  - {item['title']} <{item['link']}>")
            print()
        elif message["id"] == NEW_FEED:
            feed = data["feed"]
            print(f"\n[subscribed to '{feed['title']}', {feed['unseen_count']} unseen]\n")


async def chat_loop(agent, config: dict) -> None:
    """Run the interactive chat loop."""
    print("feedpush ready! Type your message (Ctrl+C to quit).\n")

    while True:
        try:
            user_input = await asyncio.to_thread(input, "You: ")
        except EOFError:
            break

        if not user_input.strip():
            continue

        try:
            response = await asyncio.to_thread(
                agent.invoke,
                {"messages": [HumanMessage(content=user_input)]},
                config,
            )

            last_message = response["messages"][-1]
            print(f"\nAgent: {last_message.content}\n")
        except Exception as e:
            error_msg = str(e)
            if "tool_use" in error_msg and "tool_result" in error_msg:
                # Corrupted checkpoint, start a fresh thread
                config["configurable"]["thread_id"] = uuid.uuid4().hex
                print("\nAgent: Sorry, I had an issue with my memory. Let me start fresh. Please try again.\n")
            else:
                print(f"\nAgent: Sorry, I encountered an error: {error_msg}\n")


async def main() -> None:
    """Initialize and run the feedpush console."""
    settings = Settings.from_env()

    db = Database(settings.db_path)
    db.connect()
    user = db.get_or_create_user(settings.username)

    index = SubscriptionIndex()
    dispatcher = NotificationDispatcher(index, settings.delivery_timeout)

    async with httpx.AsyncClient(headers={"User-Agent": settings.user_agent}) as client:
        scheduler = FetchScheduler(db, dispatcher, client, settings.fetch_timeout)
        hub = ConnectionHub(db, index, dispatcher, scheduler)

        session = ConsoleSession(user.id)
        await hub.register_session(session)

        tools = create_tools(hub, session, asyncio.get_running_loop())
        agent = create_agent(tools, checkpoint_db_path=settings.checkpoint_path)

        # Each run gets a fresh thread to avoid corrupted checkpoint issues
        config = {"configurable": {"thread_id": uuid.uuid4().hex}}

        poller_task = asyncio.create_task(
            start_polling(scheduler, settings.poll_interval)
        )

        try:
            await chat_loop(agent, config)
        except KeyboardInterrupt:
            print("\nGoodbye!")
        finally:
            poller_task.cancel()
            try:
                await poller_task
            except asyncio.CancelledError:
                pass
            hub.unregister_session(session)
            index.clear()
            db.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
