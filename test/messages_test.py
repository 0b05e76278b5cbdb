import asyncio

import pytest

from chat_sync.app.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from chat_sync.app.messages.schemas import MediaRef, MessageType
from chat_sync.app.store.paths import message_path


@pytest.fixture
async def direct_chat(create_chat):
    return await create_chat(['alice', 'bob'])


def slow_down_preview_writes(engine, monkeypatch, ticks):
    """Hold every preview write for a number of event loop turns"""
    apply_last_message = engine.registry.apply_last_message

    async def delayed(*args, **kwargs):
        for _ in range(ticks):
            await asyncio.sleep(0)
        return await apply_last_message(*args, **kwargs)

    monkeypatch.setattr(engine.registry, 'apply_last_message', delayed)


@pytest.mark.anyio
async def test_send_updates_preview_and_unread_counts(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    assert message.senderName == 'Alice Nguyen'
    assert not message.isRead

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.unreadCount == {'alice': 0, 'bob': 1}
    assert chat.lastMessage.content == 'hi'
    assert chat.lastMessage.senderId == 'alice'
    assert chat.lastMessageAt == message.timestamp


@pytest.mark.anyio
async def test_deleting_the_latest_message_restores_previous_preview(engine, direct_chat):
    await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'yo')
    sup = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'sup')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'sup'
    assert chat.unreadCount['bob'] == 2

    await engine.messages.delete(direct_chat.id, sup.id, 'alice')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'yo'
    assert chat.unreadCount['bob'] == 1


@pytest.mark.anyio
async def test_deleting_the_latest_message_restores_the_other_senders_preview(engine, direct_chat):
    await engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, 'yo')
    sup = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'sup')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.unreadCount == {'alice': 1, 'bob': 1}

    await engine.messages.delete(direct_chat.id, sup.id, 'alice')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'yo'
    assert chat.lastMessage.senderId == 'bob'
    assert chat.unreadCount == {'alice': 1, 'bob': 0}


@pytest.mark.anyio
async def test_deleting_the_only_message_clears_preview(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'oops')

    await engine.messages.delete(direct_chat.id, message.id, 'alice')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage is None
    assert chat.unreadCount == {'alice': 0, 'bob': 0}
    assert await engine.messages.list_messages(direct_chat.id, 10) == []


@pytest.mark.anyio
async def test_deleting_a_read_message_keeps_counters(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'seen')
    await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'unseen')
    await engine.messages.mark_read(direct_chat.id, message.id, 'bob')

    await engine.messages.delete(direct_chat.id, message.id, 'alice')

    assert await engine.tracker.get_count(direct_chat.id, 'bob') == 1


@pytest.mark.anyio
async def test_delete_permissions(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'mine')

    with pytest.raises(PermissionDeniedError):
        await engine.messages.delete(direct_chat.id, message.id, 'bob')

    deleted = await engine.messages.delete(direct_chat.id, message.id, 'admin')
    assert deleted.id == message.id

    with pytest.raises(NotFoundError):
        await engine.messages.delete(direct_chat.id, message.id, 'alice')


@pytest.mark.anyio
async def test_mark_read_is_idempotent(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    assert await engine.messages.mark_read(direct_chat.id, message.id, 'bob')
    assert not await engine.messages.mark_read(direct_chat.id, message.id, 'bob')

    stored = await engine.messages.get_message(direct_chat.id, message.id)
    assert stored.isRead
    assert stored.readAt is not None
    assert await engine.tracker.get_count(direct_chat.id, 'bob') == 0


@pytest.mark.anyio
async def test_senders_do_not_read_their_own_messages(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    assert not await engine.messages.mark_read(direct_chat.id, message.id, 'alice')
    assert not (await engine.messages.get_message(direct_chat.id, message.id)).isRead


@pytest.mark.anyio
async def test_mark_read_requires_participant(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    with pytest.raises(PermissionDeniedError):
        await engine.messages.mark_read(direct_chat.id, message.id, 'carol')
    with pytest.raises(NotFoundError):
        await engine.messages.mark_read(direct_chat.id, 'missing', 'bob')


@pytest.mark.anyio
async def test_mark_all_read(engine, direct_chat, fake):
    for _ in range(3):
        await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, fake.sentence())
    await engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, fake.sentence())

    assert await engine.messages.mark_all_read(direct_chat.id, 'bob') == 3
    assert await engine.tracker.get_count(direct_chat.id, 'bob') == 0
    assert await engine.tracker.get_count(direct_chat.id, 'alice') == 1

    messages = await engine.messages.list_messages(direct_chat.id, 10)
    assert [m.isRead for m in messages] == [True, True, True, False]

    assert await engine.messages.mark_all_read(direct_chat.id, 'bob') == 0


@pytest.mark.anyio
async def test_mark_all_read_leaves_messages_deleted_meanwhile_deleted(engine, store, direct_chat, monkeypatch):
    gone = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'gone')
    kept = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'kept')
    list_messages = engine.messages.list_messages

    async def list_then_delete(chat_id, limit=50):
        messages = await list_messages(chat_id, limit)
        await store.delete(message_path(chat_id, gone.id))
        return messages

    monkeypatch.setattr(engine.messages, 'list_messages', list_then_delete)

    assert await engine.messages.mark_all_read(direct_chat.id, 'bob') == 1

    assert await store.get(message_path(direct_chat.id, gone.id)) is None
    with pytest.raises(NotFoundError):
        await engine.messages.get_message(direct_chat.id, gone.id)
    assert (await engine.messages.get_message(direct_chat.id, kept.id)).isRead


@pytest.mark.anyio
async def test_partial_message_nodes_are_not_found(engine, store, direct_chat):
    await store.set(message_path(direct_chat.id, 'broken'), {'isRead': True, 'readAt': 1})

    with pytest.raises(NotFoundError):
        await engine.messages.get_message(direct_chat.id, 'broken')
    with pytest.raises(NotFoundError):
        await engine.messages.delete(direct_chat.id, 'broken', 'admin')
    with pytest.raises(NotFoundError):
        await engine.messages.mark_read(direct_chat.id, 'broken', 'bob')
    with pytest.raises(NotFoundError):
        await engine.messages.edit(direct_chat.id, 'broken', 'text', 'alice')


@pytest.mark.anyio
async def test_edit_message(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'helo')

    edited = await engine.messages.edit(direct_chat.id, message.id, 'hello', 'alice')

    assert edited.content == 'hello'
    assert edited.isEdited
    assert edited.editedAt >= message.timestamp
    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'hello'


@pytest.mark.anyio
async def test_editing_an_older_message_keeps_the_newer_preview(engine, direct_chat):
    older = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'first')
    await engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, 'second')

    await engine.messages.edit(direct_chat.id, older.id, 'first, edited', 'alice')

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'second'


@pytest.mark.anyio
async def test_edit_errors(engine, direct_chat):
    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    with pytest.raises(PermissionDeniedError):
        await engine.messages.edit(direct_chat.id, message.id, 'hijacked', 'bob')
    with pytest.raises(ValidationError):
        await engine.messages.edit(direct_chat.id, message.id, '   ', 'alice')
    with pytest.raises(NotFoundError):
        await engine.messages.edit(direct_chat.id, 'missing', 'text', 'alice')


@pytest.mark.anyio
async def test_send_validation(engine, direct_chat):
    with pytest.raises(ValidationError):
        await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, '  ')
    with pytest.raises(ValidationError):
        await engine.messages.send(direct_chat.id, 'alice', MessageType.IMAGE, '')
    with pytest.raises(ValidationError):
        await engine.messages.send(direct_chat.id, 'alice', 'sticker', 'hi')
    with pytest.raises(NotFoundError):
        await engine.messages.send('missing', 'alice', MessageType.TEXT, 'hi')
    with pytest.raises(PermissionDeniedError):
        await engine.messages.send(direct_chat.id, 'carol', MessageType.TEXT, 'hi')


@pytest.mark.anyio
async def test_media_message_preview_uses_attachment_name(engine, direct_chat):
    media = MediaRef(url='https://blobs.test/cat.png', name='cat.png', size=120)

    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.IMAGE, '', media)

    assert message.media == media
    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.type == MessageType.IMAGE
    assert chat.lastMessage.content == 'cat.png'


@pytest.mark.anyio
async def test_long_previews_are_truncated(engine, direct_chat):
    await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'x' * 150)

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.content == 'x' * 100 + '...'


@pytest.mark.anyio
async def test_removed_participant_cannot_send(engine, create_chat):
    group = await create_chat(['alice', 'bob', 'carol'], is_group=True)
    await engine.registry.remove_participant(group.id, 'carol', 'alice')

    with pytest.raises(PermissionDeniedError):
        await engine.messages.send(group.id, 'carol', MessageType.TEXT, 'still here?')


@pytest.mark.anyio
async def test_list_messages_returns_newest_in_display_order(engine, direct_chat):
    sent = []
    for i in range(5):
        sent.append(await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, f'm{i}'))

    messages = await engine.messages.list_messages(direct_chat.id, 3)
    assert [m.content for m in messages] == ['m2', 'm3', 'm4']

    with pytest.raises(ValidationError):
        await engine.messages.list_messages(direct_chat.id, 0)


@pytest.mark.anyio
async def test_malformed_messages_are_skipped(engine, store, direct_chat):
    await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'valid')
    await store.set(f'messages/{direct_chat.id}/broken', {'isRead': True})

    messages = await engine.messages.list_messages(direct_chat.id, 10)

    assert [m.content for m in messages] == ['valid']


@pytest.mark.anyio
async def test_watch_messages(engine, direct_chat):
    snapshots = []
    unsubscribe = engine.messages.watch_messages(direct_chat.id, 2, snapshots.append)
    assert snapshots == [[]]

    for text in ('a', 'b', 'c'):
        await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, text)

    assert [m.content for m in snapshots[-1]] == ['b', 'c']
    unsubscribe()


@pytest.mark.anyio
async def test_concurrent_senders_converge_on_latest_preview(engine, direct_chat):
    sends = []
    for i in range(4):
        sends.append(engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, f'a{i}'))
        sends.append(engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, f'b{i}'))

    sent = await asyncio.gather(*sends)

    latest = max(sent, key=lambda m: m.sort_key())
    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.id == latest.id
    assert chat.unreadCount == {'alice': 4, 'bob': 4}


@pytest.mark.anyio
@pytest.mark.parametrize('ticks', [0, 3, 20])
async def test_concurrent_edit_and_delete_never_leave_a_deleted_preview(engine, direct_chat, monkeypatch, ticks):
    yo = await engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, 'yo')
    sup = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'sup')
    slow_down_preview_writes(engine, monkeypatch, ticks)

    # The edit loses with NotFoundError when the delete gets there first
    await asyncio.gather(
        engine.messages.edit(direct_chat.id, sup.id, 'sup?', 'alice'),
        engine.messages.delete(direct_chat.id, sup.id, 'alice'),
        return_exceptions=True,
    )

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.id == yo.id
    assert chat.lastMessage.senderId == 'bob'
    assert [m.id for m in await engine.messages.list_messages(direct_chat.id, 10)] == [yo.id]


@pytest.mark.anyio
async def test_deleting_a_message_before_its_preview_lands(engine, direct_chat, monkeypatch):
    yo = await engine.messages.send(direct_chat.id, 'bob', MessageType.TEXT, 'yo')
    slow_down_preview_writes(engine, monkeypatch, 50)

    sending = asyncio.create_task(engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'sup'))
    while True:
        pending = [m for m in await engine.messages.list_messages(direct_chat.id, 10) if m.content == 'sup']
        if pending:
            break
    await engine.messages.delete(direct_chat.id, pending[0].id, 'alice')
    await sending

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.id == yo.id


@pytest.mark.anyio
async def test_editing_a_message_before_its_preview_lands(engine, direct_chat, monkeypatch):
    slow_down_preview_writes(engine, monkeypatch, 50)

    sending = asyncio.create_task(engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'helo'))
    while True:
        pending = await engine.messages.list_messages(direct_chat.id, 10)
        if pending:
            break
    await engine.messages.edit(direct_chat.id, pending[0].id, 'hello', 'alice')
    await sending

    chat = await engine.registry.get_chat(direct_chat.id)
    assert chat.lastMessage.id == pending[0].id
    assert chat.lastMessage.content == 'hello'


@pytest.mark.anyio
async def test_projection_failures_are_reported_not_raised(engine, direct_chat, failures, monkeypatch):
    async def conflict(*args, **kwargs):
        raise ConflictError("counter is busy")

    monkeypatch.setattr(engine.tracker, 'on_message_sent', conflict)

    message = await engine.messages.send(direct_chat.id, 'alice', MessageType.TEXT, 'hi')

    assert (await engine.messages.get_message(direct_chat.id, message.id)).content == 'hi'
    assert (await engine.registry.get_chat(direct_chat.id)).lastMessage.id == message.id
    assert len(failures) == 1
    assert failures[0].projection == 'unreadCount'
    assert failures[0].messageId == message.id
