import asyncio
import logging
from dataclasses import dataclass, replace

import pytest

from core.commands import CommandDispatcher
from core.message_router import RelayRouter
from core.models import (
    Broadcast,
    Chat,
    PlatformMessage,
    PlayerJoined,
    PlayerLeft,
    RichMessage,
    ServerStarted,
    TextMessage,
)
from conftest import BOT_ID, CHANNEL_ID


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    async def dispatch(self, raw, issuer_id):
        self.calls.append((raw, issuer_id))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def router(context, game, connection, roster, dispatcher):
    return RelayRouter(context, game, connection, roster, dispatcher, logging.getLogger("test.router"))


def discord_message(content, author_id=55, author_name="Carol", channel_id=CHANNEL_ID):
    return PlatformMessage(channel_id=channel_id, author_id=author_id, author_name=author_name, content=content)


def sent_text(connection):
    return [message.text for message in connection.sent]


# --- Game server -> Discord ---

def test_game_events_are_formatted_per_kind(router, connection):
    for event in (
        ServerStarted(),
        PlayerJoined("Alice"),
        Chat("Alice", "hello"),
        Broadcast("Blood moon rising"),
        PlayerLeft("Alice"),
    ):
        asyncio.run(router.on_game_event(event))

    assert sent_text(connection) == [
        "**:rocket: Server has started.**",
        "**:heavy_plus_sign: Alice has joined the server.**",
        "**<Alice>** hello",
        "**:mega: Broadcast:** Blood moon rising",
        "**:heavy_minus_sign: Alice has left the server.**",
    ]


@pytest.mark.parametrize("text", ["/login hunter2", ".home", "/"])
def test_game_commands_never_reach_discord(router, connection, text):
    asyncio.run(router.on_game_event(Chat("Alice", text)))
    asyncio.run(router.on_game_event(Broadcast(text)))
    assert connection.sent == []


def test_chat_mentions_are_encoded(router, connection):
    asyncio.run(router.on_game_event(Chat("Bob", "@alice meet in #general")))
    assert sent_text(connection) == ["**<Bob>** <@42> meet in <#10>"]


def test_missing_player_on_join_or_leave_is_suppressed(router, connection):
    asyncio.run(router.on_game_event(PlayerJoined(None)))
    asyncio.run(router.on_game_event(PlayerLeft(None)))
    assert connection.sent == []


def test_unknown_event_type_is_rejected(router):
    @dataclass(frozen=True)
    class Explosion:
        text: str

    with pytest.raises(TypeError):
        asyncio.run(router.on_game_event(Explosion("boom")))


def test_chat_logging_follows_flag(router, context, caplog):
    with caplog.at_level(logging.INFO, logger="test.router"):
        asyncio.run(router.on_game_event(Chat("Alice", "logged line")))
    assert "Alice said: logged line" in caplog.text

    caplog.clear()
    context.config = replace(context.config, log_chat=False)
    with caplog.at_level(logging.INFO, logger="test.router"):
        asyncio.run(router.on_game_event(Chat("Alice", "quiet line")))
    assert "quiet line" not in caplog.text


# --- Discord -> game server ---

def test_own_messages_are_never_broadcast(router, game):
    for content in ("**<Alice>** hello", "**:white_check_mark: Relay available.**", "!uptime"):
        asyncio.run(router.on_platform_message(discord_message(content, author_id=BOT_ID)))
    assert game.broadcasts == []


def test_messages_from_other_channels_are_ignored(router, game, dispatcher):
    asyncio.run(router.on_platform_message(discord_message("hi", channel_id=CHANNEL_ID + 1)))
    asyncio.run(router.on_platform_message(discord_message("!uptime", channel_id=CHANNEL_ID + 1)))
    assert game.broadcasts == []
    assert dispatcher.calls == []


def test_platform_message_is_normalized_and_broadcast(router, game, context):
    asyncio.run(router.on_platform_message(discord_message("hey <@42> see <#11> <:pog:123>")))
    assert game.broadcasts == [
        ("<Carol@Discord> hey @Alice see #terraria :pog:", context.config.broadcast_color),
    ]


def test_prefixed_messages_go_to_the_dispatcher(router, game, dispatcher):
    asyncio.run(router.on_platform_message(discord_message("!playerlist", author_id=77)))
    assert dispatcher.calls == [("!playerlist", 77)]
    assert game.broadcasts == []


def test_bare_prefix_is_relayed_as_chat(router, game, dispatcher):
    asyncio.run(router.on_platform_message(discord_message("!")))
    assert dispatcher.calls == []
    assert game.broadcasts[0][0] == "<Carol@Discord> !"


def test_empty_messages_are_not_broadcast(router, game):
    asyncio.run(router.on_platform_message(discord_message("")))
    assert game.broadcasts == []


def test_broadcast_failure_is_logged_not_raised(router, game, caplog):
    async def broken(text, color):
        raise ConnectionError("host down")

    game.broadcast = broken
    with caplog.at_level(logging.ERROR, logger="test.router"):
        asyncio.run(router.on_platform_message(discord_message("hello")))
    assert "host down" in caplog.text


def test_real_dispatcher_answers_through_connection(context, game, connection, roster):
    dispatcher = CommandDispatcher(context, game, connection.send)
    router = RelayRouter(context, game, connection, roster, dispatcher)

    asyncio.run(router.on_platform_message(discord_message("!uptime")))

    assert len(connection.sent) == 1
    assert isinstance(connection.sent[0], RichMessage)
    assert connection.sent[0].title == "Uptime"
    assert game.broadcasts == []


# --- Queue ---

def test_consumer_preserves_arrival_order(router, connection, game):
    async def scenario():
        consumer = asyncio.create_task(router.run())
        router.submit_game_event(PlayerJoined("A"))
        router.submit_platform_message(discord_message("first"))
        router.submit_game_event(Chat("A", "one"))
        router.submit_platform_message(discord_message("second"))
        router.submit_game_event(Chat("A", "two"))
        await router.drain()
        consumer.cancel()

    asyncio.run(scenario())
    assert sent_text(connection) == [
        "**:heavy_plus_sign: A has joined the server.**",
        "**<A>** one",
        "**<A>** two",
    ]
    assert [text for text, _ in game.broadcasts] == ["<Carol@Discord> first", "<Carol@Discord> second"]


def test_submission_from_another_thread(router, connection):
    async def scenario():
        consumer = asyncio.create_task(router.run())
        await asyncio.sleep(0)
        await asyncio.to_thread(router.submit_game_event, PlayerJoined("Threaded"))
        await router.drain()
        consumer.cancel()

    asyncio.run(scenario())
    assert sent_text(connection) == ["**:heavy_plus_sign: Threaded has joined the server.**"]


def test_foreign_thread_before_start_is_refused(router, caplog):
    with caplog.at_level(logging.WARNING, logger="test.router"):
        router.submit_game_event(PlayerJoined("Early"))
    assert "Relay not started, dropping PlayerJoined" in caplog.text
    assert router._queue.empty()


def test_attached_router_accepts_threads_before_consumer_runs(router, connection):
    async def scenario():
        router.attach(asyncio.get_running_loop())
        await asyncio.to_thread(router.submit_game_event, PlayerJoined("Early"))
        await asyncio.sleep(0)
        consumer = asyncio.create_task(router.run())
        await router.drain()
        consumer.cancel()

    asyncio.run(scenario())
    assert sent_text(connection) == ["**:heavy_plus_sign: Early has joined the server.**"]


def test_consumer_survives_a_failing_item(router, connection):
    async def scenario():
        original = router.on_game_event
        calls = []

        async def flaky(event):
            calls.append(event)
            if len(calls) == 1:
                raise RuntimeError("handler exploded")
            await original(event)

        router.on_game_event = flaky
        consumer = asyncio.create_task(router.run())
        router.submit_game_event(PlayerJoined("First"))
        router.submit_game_event(PlayerJoined("Second"))
        await router.drain()
        consumer.cancel()

    asyncio.run(scenario())
    assert sent_text(connection) == ["**:heavy_plus_sign: Second has joined the server.**"]


def test_full_queue_drops_items(context, game, connection, roster, dispatcher, caplog):
    router = RelayRouter(context, game, connection, roster, dispatcher, logging.getLogger("test.router"), queue_size=1)
    async def scenario():
        router.submit_game_event(PlayerJoined("A"))
        router.submit_game_event(PlayerJoined("B"))

    with caplog.at_level(logging.WARNING, logger="test.router"):
        asyncio.run(scenario())
    assert "Relay queue full, dropping PlayerJoined" in caplog.text


def test_text_messages_are_plain(router, connection):
    asyncio.run(router.on_game_event(PlayerJoined("Z")))
    assert isinstance(connection.sent[0], TextMessage)
