import pytest
from unittest.mock import AsyncMock, MagicMock

from somnus.brain.llm_gateway import KeysExhaustedError
from somnus.journal.service import JournalService, DreamNotFound, AccountRequired


@pytest.fixture
def interpreter():
    interpreter = MagicMock()
    interpreter.generate_title = AsyncMock(return_value="Flight Over Mountains ⛰️")
    return interpreter


@pytest.fixture
def service(store, interpreter):
    return JournalService(store, interpreter)


@pytest.fixture
async def users(store):
    alice = await store.create_user("alice", "hash")
    bob = await store.create_user("bob", "hash")
    return alice, bob


@pytest.mark.asyncio
async def test_create_dream_starts_untitled(service, users):
    alice, _ = users
    dream = await service.create_dream(alice.id, "I flew over mountains")

    assert dream.title is None
    assert [d.id for d in await service.list_dreams(alice.id)] == [dream.id]


@pytest.mark.asyncio
async def test_create_dream_requires_text(service, users):
    alice, _ = users
    with pytest.raises(ValueError):
        await service.create_dream(alice.id, "   ")


@pytest.mark.asyncio
async def test_attach_title(service, store, users, interpreter):
    alice, _ = users
    dream = await service.create_dream(alice.id, "I flew over mountains")

    updated = await service.attach_title(dream.id, dream.text, "en")

    assert updated.title == "Flight Over Mountains ⛰️"
    assert (await store.get_dream(dream.id)).title == "Flight Over Mountains ⛰️"
    interpreter.generate_title.assert_awaited_once_with("I flew over mountains", "en")


@pytest.mark.asyncio
async def test_attach_title_failure_leaves_dream_untitled(service, store, users, interpreter):
    alice, _ = users
    interpreter.generate_title.side_effect = KeysExhaustedError(2)
    dream = await service.create_dream(alice.id, "I flew over mountains")

    assert await service.attach_title(dream.id, dream.text) is None
    stored = await store.get_dream(dream.id)
    assert stored is not None
    assert stored.title is None


@pytest.mark.asyncio
async def test_attach_title_without_interpreter(store, users):
    alice, _ = users
    service = JournalService(store)
    dream = await service.create_dream(alice.id, "text")
    assert await service.attach_title(dream.id, dream.text) is None


@pytest.mark.asyncio
async def test_owner_can_update_and_delete(service, store, users):
    alice, _ = users
    dream = await service.create_dream(alice.id, "text")

    updated = await service.update_dream(alice.id, dream.id, title="New", interpretation="Meaning")
    assert (updated.title, updated.interpretation) == ("New", "Meaning")

    await service.delete_dream(alice.id, dream.id)
    assert await store.get_dream(dream.id) is None


@pytest.mark.asyncio
async def test_other_user_gets_not_found_and_row_is_unchanged(service, store, users):
    alice, bob = users
    dream = await service.create_dream(alice.id, "private dream", title="Mine")

    with pytest.raises(DreamNotFound):
        await service.update_dream(bob.id, dream.id, title="Stolen")
    with pytest.raises(DreamNotFound):
        await service.delete_dream(bob.id, dream.id)

    stored = await store.get_dream(dream.id)
    assert stored.title == "Mine"
    assert stored.user_id == alice.id


@pytest.mark.asyncio
async def test_unknown_dream_is_not_found(service, users):
    alice, _ = users
    with pytest.raises(DreamNotFound):
        await service.update_dream(alice.id, "no-such-id", title="x")
    with pytest.raises(DreamNotFound):
        await service.delete_dream(alice.id, "no-such-id")


@pytest.mark.asyncio
async def test_sync_dreams(service, users):
    alice, _ = users
    created = await service.sync_dreams(alice.id, [{"text": "one"}, {"text": "two", "title": "Two"}])

    assert len(created) == 2
    assert all(d.user_id == alice.id for d in created)


@pytest.mark.asyncio
async def test_sync_rejects_entry_without_text(service, store, users):
    alice, _ = users
    with pytest.raises(ValueError):
        await service.sync_dreams(alice.id, [{"text": "one"}, {"title": "no text"}])
    assert await store.list_dreams(alice.id) == []


@pytest.mark.asyncio
async def test_principal_without_user_row_cannot_write(service, store):
    with pytest.raises(AccountRequired):
        await service.create_dream("admin", "orphan")
    with pytest.raises(AccountRequired):
        await service.sync_dreams("admin", [{"text": "orphan"}])
    assert await store.count_dreams() == 0
