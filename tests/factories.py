"""
Row builders shared by the tests.
"""
from datetime import datetime, timezone

from playgram.models.contact import Contact, QRCode, Tool
from playgram.models.manychat import ManychatConnection
from playgram.models.webhook import WebhookSubscription

OWNER_ID = "owner-1"


async def add(session_factory, *rows):
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()
    return rows[0] if len(rows) == 1 else rows


async def make_subscription(session_factory, cipher, url="https://example.com/hook", events=("qr.scanned",),
                            secret="abc", owner_id=OWNER_ID, custom_headers=None, is_active=True):
    return await add(session_factory, WebhookSubscription(
        owner_id=owner_id,
        url=url,
        encrypted_secret=cipher.encrypt(secret),
        events=list(events),
        custom_headers=custom_headers,
        is_active=is_active,
    ))


async def make_qr_code(session_factory, owner_id=OWNER_ID, code="X1"):
    contact = Contact(owner_id=owner_id, manychat_id="mc-1", first_name="Ada", last_name="Lovelace")
    tool = Tool(owner_id=owner_id, name="Spring Launch", tool_type="qr_campaign")
    await add(session_factory, contact, tool)
    return await add(session_factory, QRCode(
        owner_id=owner_id,
        tool_id=tool.id,
        contact_id=contact.id,
        code=code,
        qr_type="promotion",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    ))


async def connect_manychat(session_factory, cipher, owner_id=OWNER_ID, token="mc-token"):
    return await add(session_factory, ManychatConnection(
        owner_id=owner_id,
        encrypted_api_token=cipher.encrypt(token),
        page_name="Playgram Page",
    ))
