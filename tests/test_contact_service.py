"""
ManyChat contact ingestion tests.
"""
from sqlalchemy import select

from playgram.models.contact import Contact, CustomField, Tag
from playgram.services.contact_service import ContactService, SubscriberData
from tests.factories import OWNER_ID, connect_manychat


def subscriber(**overrides) -> SubscriberData:
    data = {
        "id": 4242,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "instagram_username": "ada.codes",
        "profile_pic": "https://cdn.example.com/ada.jpg",
        "tags": [{"id": 7, "name": "VIP"}],
        "custom_fields": {"city": "London", "visits": 3, "empty": None},
    }
    return SubscriberData.model_validate({**data, **overrides})


async def ingest(session_factory, data: SubscriberData, owner_id=OWNER_ID):
    async with session_factory() as db:
        return await ContactService(db).ingest_subscriber(owner_id, data)


async def load_contact(session_factory, contact_id) -> Contact:
    async with session_factory() as db:
        return await db.get(Contact, contact_id)


async def test_connection_check(session_factory, cipher):
    async with session_factory() as db:
        assert not await ContactService(db).is_connected(OWNER_ID)
    await connect_manychat(session_factory, cipher)
    async with session_factory() as db:
        assert await ContactService(db).is_connected(OWNER_ID)
        assert not await ContactService(db).is_connected("someone-else")


async def test_new_subscriber_creates_contact_with_tags_and_fields(session_factory):
    result = await ingest(session_factory, subscriber())

    assert result.created
    assert result.changes == {}
    assert (result.tags_synced, result.fields_synced) == (1, 2)

    contact = await load_contact(session_factory, result.contact_id)
    assert contact.manychat_id == "4242"
    assert contact.full_name == "Ada Lovelace"
    assert contact.last_interaction is not None
    assert [tag.name for tag in contact.tags] == ["VIP"]
    assert {value.field.name: value.value for value in contact.field_values} == {"city": "London", "visits": "3"}

    async with session_factory() as db:
        fields = {f.name: f.field_type for f in (await db.execute(select(CustomField))).scalars()}
    assert fields == {"city": "text", "visits": "number"}


async def test_known_subscriber_reports_changes(session_factory):
    first = await ingest(session_factory, subscriber())

    second = await ingest(session_factory, subscriber(
        first_name="Augusta",
        last_name=None,
        tags=[{"id": 7, "name": "VIP"}, {"id": 8, "name": "Returning"}],
        custom_fields={"city": "Paris"},
    ))

    assert not second.created
    assert second.contact_id == first.contact_id
    assert second.changes == {"firstName": {"old": "Ada", "new": "Augusta"}}

    contact = await load_contact(session_factory, first.contact_id)
    assert contact.last_name == "Lovelace"
    assert sorted(tag.name for tag in contact.tags) == ["Returning", "VIP"]
    assert {value.field.name: value.value for value in contact.field_values} == {"city": "Paris", "visits": "3"}

    async with session_factory() as db:
        assert len((await db.execute(select(Tag))).scalars().all()) == 2


async def test_unchanged_subscriber_has_no_changes(session_factory):
    await ingest(session_factory, subscriber())
    again = await ingest(session_factory, subscriber())
    assert not again.created
    assert again.changes == {}


async def test_subscribers_are_scoped_per_owner(session_factory):
    mine = await ingest(session_factory, subscriber())
    theirs = await ingest(session_factory, subscriber(), owner_id="owner-2")

    assert theirs.created
    assert theirs.contact_id != mine.contact_id


async def test_touch_creates_placeholder_then_updates(session_factory):
    async with session_factory() as db:
        created = await ContactService(db).touch(OWNER_ID, "99")
    async with session_factory() as db:
        touched = await ContactService(db).touch(OWNER_ID, "99")

    assert created.created
    assert not touched.created
    assert touched.contact_id == created.contact_id
    contact = await load_contact(session_factory, created.contact_id)
    assert contact.first_name is None
    assert contact.last_interaction is not None
