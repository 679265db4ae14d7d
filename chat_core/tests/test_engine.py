import asyncio

import pytest

from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import Author, Failure, Message, Success
from chat_core.engine.conversation_engine import ConversationEngine
from chat_core.infrastructure.storage.history import HistoryRepository
from chat_core.providers.registry import ProviderRegistry, default_catalog


class SettingsStub:
    default_provider = "ch.at"
    incognito = False
    welcome_title = "Echomind"
    welcome_message = "Hey, how can I help you?"
    chatanywhere_url = "https://remote.example/v1/chat/completions"
    chatanywhere_api_key = None
    chatanywhere_models = ["gpt-4o", "gpt-4o-mini"]
    chat_at_url = "https://ch.example/v1/chat/completions"
    local_base_url = "http://127.0.0.1:11434/api"
    local_models = ["llama3", "mistral"]


class MemoryStore:
    def __init__(self, blob=None):
        self.blob = blob
        self.saves = 0

    def save(self, blob):
        self.blob = blob
        self.saves += 1

    def load(self):
        return self.blob

    def clear(self):
        self.blob = None


class FakeDispatcher:
    """按调用顺序返回回复；gated=True 时需要手动 release 才会完成。"""

    def __init__(self, gated=False, models=None):
        self.gated = gated
        self.calls = []
        self.models = models or []
        self._gates = []

    async def send(self, provider, model, history):
        self.calls.append((provider.name, model, list(history)))
        n = len(self.calls)
        if self.gated:
            gate = asyncio.Event()
            self._gates.append(gate)
            await gate.wait()
        return Success(f"reply {n}")

    async def discover_local_models(self, provider=None):
        return list(self.models)

    def release(self, index=0):
        self._gates[index].set()


def make_engine(dispatcher=None, store=None, cfg=SettingsStub, **kw):
    store = store if store is not None else MemoryStore()
    engine = ConversationEngine(
        registry=default_catalog(cfg),
        dispatcher=dispatcher or FakeDispatcher(),
        repository=HistoryRepository(store),
        cfg=cfg,
        **kw,
    )
    engine.load()
    return engine, store


def test_load_seeds_welcome_conversation():
    engine, _ = make_engine()
    [conv] = engine.conversations
    assert engine.current_id == conv.id
    assert conv.title == "Echomind"
    assert conv.messages == (Message("Hey, how can I help you?", Author.ASSISTANT),)
    assert engine.current_provider.name == "ch.at"
    assert engine.current_model == "default"


def test_load_restores_saved_history():
    store = MemoryStore()
    engine, _ = make_engine(store=store)
    second = engine.new_chat()
    restored, _ = make_engine(store=store)
    assert [c.id for c in restored.conversations] == [c.id for c in engine.conversations]
    assert restored.current_id == second.id


def test_send_user_message_appends_user_then_reply():
    async def scenario():
        engine, store = make_engine()
        before = len(engine.current_conversation.messages)
        task = engine.send_user_message("What is the capital of France?")
        assert len(engine.current_conversation.messages) == before + 1
        assert engine.current_conversation.messages[-1] == Message(
            "What is the capital of France?", Author.USER
        )
        assert store.saves == 1
        await task
        assert len(engine.current_conversation.messages) == before + 2
        assert engine.current_conversation.messages[-1] == Message("reply 1", Author.ASSISTANT)
        assert store.saves == 2
        return engine

    engine = asyncio.run(scenario())
    _, _, history = engine._dispatcher.calls[0]
    assert [m.author for m in history] == [Author.ASSISTANT, Author.USER]


def test_first_message_sets_title_of_empty_conversation():
    async def scenario():
        engine, _ = make_engine()
        engine.new_chat()
        await engine.send_user_message("Explain asyncio event loops in detail please")
        await engine.send_user_message("And tasks?")
        return engine.current_conversation

    conv = asyncio.run(scenario())
    assert conv.title == "Explain asyncio event loo"
    assert len(conv.messages) == 4


def test_blank_message_is_ignored():
    async def scenario():
        engine, store = make_engine()
        before = engine.current_conversation
        assert engine.send_user_message("") is None
        assert engine.send_user_message("   \n\t") is None
        assert engine.current_conversation is before
        assert store.saves == 0
        assert engine._dispatcher.calls == []

    asyncio.run(scenario())


def test_reply_lands_in_sending_conversation_after_new_chat():
    async def scenario():
        dispatcher = FakeDispatcher(gated=True)
        engine, _ = make_engine(dispatcher=dispatcher)
        conv_a = engine.current_conversation
        task = engine.send_user_message("question for A")
        await asyncio.sleep(0)
        conv_b = engine.new_chat()
        assert engine.current_id == conv_b.id
        dispatcher.release()
        await task
        a = engine.get_conversation(conv_a.id)
        b = engine.get_conversation(conv_b.id)
        assert a.messages[-1] == Message("reply 1", Author.ASSISTANT)
        assert b.messages == ()
        assert engine.current_id == conv_b.id

    asyncio.run(scenario())


def test_replies_from_two_conversations_may_land_out_of_order():
    async def scenario():
        dispatcher = FakeDispatcher(gated=True)
        engine, _ = make_engine(dispatcher=dispatcher)
        conv_a = engine.current_conversation
        engine.send_user_message("first")
        await asyncio.sleep(0)
        conv_b = engine.new_chat()
        engine.send_user_message("second")
        await asyncio.sleep(0)
        dispatcher.release(1)
        dispatcher.release(0)
        await engine.wait_idle()
        assert engine.get_conversation(conv_a.id).messages[-1].text == "reply 1"
        assert engine.get_conversation(conv_b.id).messages[-1].text == "reply 2"
        assert [m.author for m in engine.get_conversation(conv_b.id).messages] == [
            Author.USER,
            Author.ASSISTANT,
        ]

    asyncio.run(scenario())


def test_reply_is_dropped_when_conversation_was_cleared():
    async def scenario():
        dispatcher = FakeDispatcher(gated=True)
        engine, store = make_engine(dispatcher=dispatcher)
        task = engine.send_user_message("soon to be gone")
        await asyncio.sleep(0)
        fresh = engine.clear_history()
        dispatcher.release()
        await task
        assert engine.conversations == (fresh,)
        assert fresh.messages == ()

    asyncio.run(scenario())


def test_retry_truncates_then_regenerates():
    async def scenario():
        engine, store = make_engine()
        await engine.send_user_message("q1")
        await engine.send_user_message("q2")
        conv = engine.current_conversation
        # greeting, q1, reply 1, q2, reply 2
        assert len(conv.messages) == 5
        target = conv.messages[2]
        task = engine.retry(conv, target)
        assert len(engine.current_conversation.messages) == 2
        assert store.saves == 5
        await task
        after = engine.current_conversation
        assert len(after.messages) == 3
        assert after.messages[-1] == Message("reply 3", Author.ASSISTANT)
        _, _, history = engine._dispatcher.calls[-1]
        assert [m.text for m in history] == ["Hey, how can I help you?", "q1"]

    asyncio.run(scenario())


def test_retry_rejects_user_and_unknown_messages():
    async def scenario():
        engine, _ = make_engine()
        await engine.send_user_message("q1")
        conv = engine.current_conversation
        assert engine.retry(conv, conv.messages[1]) is None
        assert engine.retry(conv, Message("reply 1", Author.ASSISTANT)) is None
        assert engine.retry(Conversation(), conv.messages[2]) is None
        assert engine.current_conversation is conv

    asyncio.run(scenario())


def test_select_conversation():
    engine, _ = make_engine()
    first = engine.current_conversation
    second = engine.new_chat()
    assert [c.id for c in engine.conversations] == [second.id, first.id]
    assert engine.select_conversation(first.id)
    assert engine.current_id == first.id
    assert not engine.select_conversation("missing")
    assert engine.current_id == first.id


def test_clear_history_then_load_gives_single_empty_conversation():
    store = MemoryStore()
    engine, _ = make_engine(store=store)
    engine.new_chat()
    engine.clear_history()
    loaded = HistoryRepository(store).load()
    assert len(loaded) == 1
    assert loaded[0].messages == ()
    assert loaded[0].title == "New Chat"
    assert engine.current_id == engine.conversations[0].id


def test_incognito_skips_persistence():
    async def scenario():
        engine, store = make_engine(incognito=True)
        engine.new_chat()
        await engine.send_user_message("secret")
        assert store.saves == 0
        engine.set_incognito(False)
        engine.new_chat()
        assert store.saves == 1

    asyncio.run(scenario())


def test_save_failure_keeps_memory_state():
    class FailingStore(MemoryStore):
        def save(self, blob):
            raise StorageError(code="STORE_WRITE_ERROR", message="read-only")

    engine, _ = make_engine(store=FailingStore())
    conv = engine.new_chat()
    assert engine.current_id == conv.id


def test_dispatch_uses_selection_at_send_time():
    async def scenario():
        dispatcher = FakeDispatcher(gated=True)
        engine, _ = make_engine(dispatcher=dispatcher)
        assert engine.select_provider("chatanywhere")
        assert engine.current_model == "gpt-4o"
        assert engine.select_model("gpt-4o-mini")
        assert not engine.select_model("not-listed")
        task = engine.send_user_message("hi")
        await asyncio.sleep(0)
        engine.select_provider("ch.at")
        dispatcher.release()
        await task
        assert dispatcher.calls[0][:2] == ("ChatAnywhere", "gpt-4o-mini")
        assert not engine.select_provider("nope")
        assert engine.current_provider.name == "ch.at"

    asyncio.run(scenario())


def test_refresh_local_models():
    async def scenario():
        dispatcher = FakeDispatcher(models=["qwen2:7b"])
        engine, _ = make_engine(dispatcher=dispatcher)
        engine.select_provider("Ollama (Local)")
        assert engine.current_model == "llama3"
        assert await engine.refresh_local_models() == ["qwen2:7b"]
        assert engine.current_model == "qwen2:7b"
        dispatcher.models = []
        assert await engine.refresh_local_models() == ["qwen2:7b"]

    asyncio.run(scenario())


def test_failure_outcome_text_becomes_assistant_turn():
    class FailingDispatcher(FakeDispatcher):
        async def send(self, provider, model, history):
            return Failure("Error: connection refused")

    async def scenario():
        engine, _ = make_engine(dispatcher=FailingDispatcher())
        await engine.send_user_message("hello?")
        return engine.current_conversation.messages[-1]

    assert asyncio.run(scenario()) == Message("Error: connection refused", Author.ASSISTANT)


def test_send_without_running_loop_changes_nothing():
    engine, store = make_engine()
    before = engine.current_conversation
    with pytest.raises(RuntimeError):
        engine.send_user_message("hello")
    assert engine.current_conversation is before
    assert store.saves == 0


def test_retry_without_running_loop_changes_nothing():
    engine, store = make_engine()
    before = engine.current_conversation
    with pytest.raises(RuntimeError):
        engine.retry(before, before.messages[0])
    assert engine.current_conversation is before
    assert len(before.messages) == 1
    assert store.saves == 0


def test_send_and_retry_without_provider_are_ignored():
    async def scenario():
        store = MemoryStore()
        engine = ConversationEngine(
            registry=ProviderRegistry([]),
            dispatcher=FakeDispatcher(),
            repository=HistoryRepository(store),
            cfg=SettingsStub,
        )
        engine.load()
        conv = engine.current_conversation
        assert engine.current_provider is None
        assert engine.send_user_message("hello") is None
        assert engine.retry(conv, conv.messages[0]) is None
        assert engine.current_conversation is conv
        assert store.saves == 0

    asyncio.run(scenario())


def test_clear_history_in_incognito_still_wipes_stored_blob():
    store = MemoryStore()
    engine, _ = make_engine(store=store)
    engine.new_chat()
    assert store.blob is not None
    engine.set_incognito(True)
    fresh = engine.clear_history()
    assert store.blob is None
    assert engine.conversations == (fresh,)
