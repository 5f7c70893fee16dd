"""LangGraph agent definition for the feedpush console."""

import sqlite3

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph
from langgraph.prebuilt import ToolNode, tools_condition

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

SYSTEM_PROMPT = """You are the feedpush console, a helpful assistant that manages RSS and Atom feed subscriptions.

You help users:
- Add and subscribe to RSS and Atom feeds by URL
- Refresh a feed right now to pick up new items
- List their subscriptions with unseen counts
- Read their latest items
- Mark items as seen

When a user wants to add or subscribe to a feed, use the add_feed tool with the URL they provide.
If add_feed reports "unreachable", tell the user the feed could not be fetched; if it reports "unparseable", tell them the URL is not an RSS or Atom feed.
"already_registered" is a success: the feed existed and the user is now subscribed.
When a user asks to check a feed for new items now, use the refresh_feed tool.
When a user asks to see their feeds or subscriptions, use the list_feeds tool.
When a user asks to see items, news, or what's new, use the get_items tool, with unseen_only when they ask for unread or new items.
When a user wants to mark items as seen or read, use the mark_as_seen tool with item IDs or a feed title.
New items also arrive on their own while you chat; they are printed separately and you do not need to repeat them.
When the user's intent is unclear, ask a clarifying question rather than guessing.
Present feed items in a readable format: title, link, date, and a brief summary.
Be concise but informative in your responses."""


def create_agent(
    tools: list,
    checkpoint_db_path: str = "feedpush_checkpoints.db",
    model_name: str = DEFAULT_MODEL,
):
    """Build the console graph: the model answers or calls tools until done.

    Conversations are checkpointed to ``checkpoint_db_path`` so a thread id
    resumes where it left off.
    """
    model = ChatAnthropic(model=model_name, temperature=0)
    if tools:
        model = model.bind_tools(tools)

    def call_model(state: MessagesState):
        reply = model.invoke([SystemMessage(content=SYSTEM_PROMPT), *state["messages"]])
        return {"messages": [reply]}

    graph = StateGraph(MessagesState)
    graph.add_node("model", call_model)
    graph.add_edge(START, "model")
    if tools:
        graph.add_node("tools", ToolNode(tools))
        graph.add_conditional_edges("model", tools_condition, ["tools", END])
        graph.add_edge("tools", "model")
    else:
        graph.add_edge("model", END)

    checkpoints = sqlite3.connect(checkpoint_db_path, check_same_thread=False)
    return graph.compile(checkpointer=SqliteSaver(checkpoints))
