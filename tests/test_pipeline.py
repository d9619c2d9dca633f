"""
End-to-end pipeline tests: webhook -> conversation -> inbound message ->
AI reply -> WhatsApp send. The language model and the Cloud API are
mocked at the gateway boundary.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import OperationalError

from nomadev_wa.db.tables import conversations, messages
from nomadev_wa.services.llm_client import Completion, LLMError
from nomadev_wa.services.results import Outcome
from nomadev_wa.services.wa_gateway import handle_webhook
from nomadev_wa.services.wa_sender import WhatsAppSendError

URL = "/whatsapp/webhook"


def _count(db, table, *where):
    stmt = select(func.count()).select_from(table)
    for clause in where:
        stmt = stmt.where(clause)
    return db.execute(stmt).scalar_one()


def _rows(db, table, *where):
    stmt = select(table)
    for clause in where:
        stmt = stmt.where(clause)
    return [dict(r) for r in db.execute(stmt).mappings().all()]


@pytest.fixture
def llm():
    with patch(
        "nomadev_wa.services.wa_gateway.chat_completion",
        return_value=Completion(content="¡Hola! ¿En qué te ayudo?", model="gpt-4o-mini", total_tokens=42),
    ) as m:
        yield m


@pytest.fixture
def sender():
    with patch("nomadev_wa.services.wa_gateway.send_text_message", return_value="wamid.OUT") as m:
        yield m


class TestTextMessageFlow:

    def test_new_contact_creates_conversation_and_reply(self, client, db, make_agent, build_payload,
                                                        text_message, llm, sender):
        make_agent()
        payload = build_payload(
            messages=[text_message(body="Hola, quiero info")],
            contacts=[{"wa_id": "5551234", "profile": {"name": "Ana"}}],
        )

        r = client.post(URL, json=payload)

        assert r.status_code == 200
        assert r.json()["summary"] == {"ok": 1, "skipped": 0, "failed": 0}

        convs = _rows(db, conversations)
        assert len(convs) == 1
        conv = convs[0]
        assert conv["agent_id"] == "agent-1"
        assert conv["contact_phone"] == "5551234"
        assert conv["contact_name"] == "Ana"
        assert conv["status"] == "active"
        assert conv["lead_score"] == 0
        assert conv["context"] == {}

        inbound = _rows(db, messages, messages.c.direction == "inbound")
        assert len(inbound) == 1
        assert inbound[0]["content"] == "Hola, quiero info"
        assert inbound[0]["message_type"] == "text"
        assert inbound[0]["sender_phone"] == "5551234"
        assert inbound[0]["sender_name"] == "Ana"
        assert inbound[0]["whatsapp_message_id"] == "wamid.A"
        assert inbound[0]["ai_generated"] is False

        outbound = _rows(db, messages, messages.c.direction == "outbound")
        assert len(outbound) == 1
        assert outbound[0]["ai_generated"] is True
        assert outbound[0]["content"] == "¡Hola! ¿En qué te ayudo?"
        assert outbound[0]["ai_model"] == "gpt-4o-mini"
        assert outbound[0]["ai_tokens_used"] == 42
        assert outbound[0]["ai_confidence"] is None
        assert outbound[0]["whatsapp_message_id"] == "wamid.OUT"
        assert outbound[0]["whatsapp_status"] == "sent"

        settings_arg, agent_arg, to, body = sender.call_args.args
        assert agent_arg.id == "agent-1"
        assert to == "5551234"
        assert body == "¡Hola! ¿En qué te ayudo?"

    def test_prompt_uses_fallback_and_agent_defaults(self, client, make_agent, build_payload,
                                                     text_message, llm, sender):
        make_agent()

        client.post(URL, json=build_payload(messages=[text_message(body="Hola")]))

        chat_messages = llm.call_args.args[1]
        assert chat_messages[0]["role"] == "system"
        assert "Eres Nomi, un asistente de IA." in chat_messages[0]["content"]
        assert chat_messages[-1] == {"role": "user", "content": "Hola"}
        # el entrante recién guardado no se duplica en el historial
        assert len(chat_messages) == 2
        assert llm.call_args.kwargs == {"model": None, "temperature": None, "max_tokens": None}

    def test_agent_model_settings_are_forwarded(self, client, make_agent, build_payload,
                                                text_message, llm, sender):
        make_agent(ai_model="gpt-4o", ai_temperature=0.2, ai_max_tokens=300)

        client.post(URL, json=build_payload(messages=[text_message()]))

        assert llm.call_args.kwargs == {"model": "gpt-4o", "temperature": 0.2, "max_tokens": 300}

    def test_existing_conversation_is_reused_with_history(self, client, db, make_agent, build_payload,
                                                          text_message, llm, sender):
        make_agent()
        client.post(URL, json=build_payload(messages=[text_message(body="Hola", wamid="wamid.A")]))
        client.post(URL, json=build_payload(messages=[text_message(body="Segundo", wamid="wamid.B")]))

        assert _count(db, conversations) == 1
        conv_id = _rows(db, conversations)[0]["id"]
        assert _count(db, messages, messages.c.conversation_id == conv_id) == 4

        chat_messages = llm.call_args.args[1]
        assert [m["role"] for m in chat_messages] == ["system", "user", "assistant", "user"]
        assert chat_messages[1]["content"] == "Hola"
        assert chat_messages[2]["content"] == "¡Hola! ¿En qué te ayudo?"
        assert chat_messages[3]["content"] == "Segundo"

    def test_closed_conversation_starts_a_new_one(self, client, db, make_agent, build_payload,
                                                  text_message, llm, sender):
        make_agent()
        db.execute(insert(conversations).values(
            id="conv-old", agent_id="agent-1", user_id="user-1", contact_phone="5551234",
            status="closed", lead_score=0,
        ))
        db.commit()

        client.post(URL, json=build_payload(messages=[text_message()]))

        active = _rows(db, conversations, conversations.c.status == "active")
        assert len(active) == 1
        assert active[0]["id"] != "conv-old"

    def test_conversation_closed_by_status_only_is_replaced(self, client, db, make_agent, build_payload,
                                                            text_message):
        make_agent(status="inactive")
        client.post(URL, json=build_payload(messages=[text_message(wamid="wamid.1")]))

        db.execute(update(conversations).values(status="closed"))
        db.commit()

        r = client.post(URL, json=build_payload(messages=[text_message(wamid="wamid.2")]))

        assert r.json()["results"][0]["outcome"] == "ok"
        assert _count(db, conversations) == 2
        assert _count(db, conversations, conversations.c.status == "active") == 1

    def test_inactive_agent_stores_but_does_not_reply(self, client, db, make_agent, build_payload,
                                                      text_message, llm, sender):
        make_agent(status="inactive")

        r = client.post(URL, json=build_payload(messages=[text_message()]))

        assert r.json()["results"][0]["reason"] == "agent_inactive"
        assert _count(db, messages, messages.c.direction == "inbound") == 1
        assert _count(db, messages, messages.c.direction == "outbound") == 0
        llm.assert_not_called()
        sender.assert_not_called()


class TestNonTextMessages:

    @pytest.mark.parametrize("status", ["active", "inactive"])
    def test_image_is_stored_and_never_answered(self, client, db, make_agent, build_payload,
                                                llm, sender, status):
        make_agent(status=status)
        image = {
            "from": "5551234", "id": "wamid.IMG", "timestamp": "1707500000", "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "mi pedido"},
        }

        client.post(URL, json=build_payload(messages=[image]))

        rows = _rows(db, messages)
        assert len(rows) == 1
        assert rows[0]["direction"] == "inbound"
        assert rows[0]["content"] == "[Imagen]"
        assert rows[0]["message_type"] == "image"
        assert rows[0]["attachments"] == [
            {"type": "image", "id": "media-1", "mime_type": "image/jpeg", "caption": "mi pedido"}
        ]
        llm.assert_not_called()
        sender.assert_not_called()

    def test_document_uses_filename(self, client, db, make_agent, build_payload, llm, sender):
        make_agent()
        doc = {
            "from": "5551234", "id": "wamid.DOC", "timestamp": "1707500000", "type": "document",
            "document": {"id": "media-2", "filename": "factura.pdf"},
        }

        client.post(URL, json=build_payload(messages=[doc]))

        row = _rows(db, messages)[0]
        assert row["content"] == "[Documento: factura.pdf]"
        assert row["message_type"] == "document"
        llm.assert_not_called()

    def test_unsupported_type_is_stored_with_placeholder(self, client, db, make_agent, build_payload,
                                                         llm, sender):
        make_agent()
        sticker = {"from": "5551234", "id": "wamid.STK", "timestamp": "1707500000", "type": "sticker",
                   "sticker": {"id": "st-1"}}

        r = client.post(URL, json=build_payload(messages=[sticker]))

        row = _rows(db, messages)[0]
        assert row["content"] == "[Mensaje no soportado: sticker]"
        assert row["message_type"] == "text"
        assert row["metadata"] == {"original_type": "sticker"}
        assert r.json()["results"][0]["reason"] == "not_text"
        llm.assert_not_called()


class TestIdempotency:

    def test_duplicate_delivery_is_skipped(self, client, db, make_agent, build_payload,
                                           text_message, llm, sender):
        make_agent()
        payload = build_payload(messages=[text_message()])

        client.post(URL, json=payload)
        r = client.post(URL, json=payload)

        assert r.json()["results"][0]["reason"] == "duplicate"
        assert _count(db, messages, messages.c.direction == "inbound") == 1
        assert _count(db, messages, messages.c.direction == "outbound") == 1
        assert llm.call_count == 1
        assert sender.call_count == 1

    def test_duplicates_are_processed_when_dedupe_disabled(self, client, db, settings, make_agent,
                                                           build_payload, text_message, llm, sender):
        settings.DEDUPE_INBOUND = False
        make_agent()
        payload = build_payload(messages=[text_message()])

        client.post(URL, json=payload)
        client.post(URL, json=payload)

        assert _count(db, messages, messages.c.direction == "inbound") == 2
        assert _count(db, messages, messages.c.direction == "outbound") == 2

    def test_stale_message_is_skipped(self, db, settings, make_agent, build_payload,
                                      text_message, llm, sender):
        settings.MAX_MESSAGE_AGE_SECONDS = 120
        make_agent()

        report = handle_webhook(db, settings, build_payload(messages=[text_message(timestamp="1000")]))

        assert report.results[0].reason == "stale"
        assert _count(db, messages) == 0


class TestFailures:

    def test_llm_failure_stores_no_reply(self, client, db, make_agent, build_payload, text_message, sender):
        make_agent()
        with patch("nomadev_wa.services.wa_gateway.chat_completion", side_effect=LLMError("HTTP 500")):
            r = client.post(URL, json=build_payload(messages=[text_message()]))

        result = r.json()["results"][0]
        assert r.status_code == 200
        assert result["outcome"] == "failed"
        assert result["stage"] == "generate_reply"
        assert _count(db, messages, messages.c.direction == "inbound") == 1
        assert _count(db, messages, messages.c.direction == "outbound") == 0
        sender.assert_not_called()

    def test_send_failure_marks_reply_failed(self, client, db, make_agent, build_payload, text_message, llm):
        make_agent()
        with patch("nomadev_wa.services.wa_gateway.send_text_message",
                   side_effect=WhatsAppSendError("WhatsApp API returned 400")):
            r = client.post(URL, json=build_payload(messages=[text_message()]))

        assert r.json()["results"][0]["stage"] == "dispatch"
        reply = _rows(db, messages, messages.c.direction == "outbound")[0]
        assert reply["whatsapp_message_id"] is None
        assert reply["whatsapp_status"] == "failed"
        assert reply["metadata"]["send_error"] == "WhatsApp API returned 400"

    def test_bad_message_does_not_abort_batch(self, db, settings, make_agent, build_payload,
                                              text_message, llm, sender):
        make_agent()
        broken = {"id": "wamid.BAD", "type": "text", "text": {"body": "sin remitente"}}

        report = handle_webhook(db, settings, build_payload(messages=[broken, text_message(wamid="wamid.OK")]))

        assert [r.outcome for r in report.results] == [Outcome.FAILED, Outcome.OK]
        assert _count(db, messages, messages.c.direction == "inbound") == 1

    def test_unknown_entry_does_not_abort_valid_entry(self, db, settings, make_agent, build_payload,
                                                      text_message, llm, sender):
        make_agent()
        unknown = build_payload(messages=[text_message(wamid="wamid.X")], phone_number_id="999")
        known = build_payload(messages=[text_message(wamid="wamid.Y")])
        payload = {"entry": unknown["entry"] + known["entry"]}

        report = handle_webhook(db, settings, payload)

        assert report.summary() == {"ok": 1, "skipped": 1, "failed": 0}
        assert _count(db, messages, messages.c.whatsapp_message_id == "wamid.Y") == 1

    def test_non_message_fields_are_ignored(self, db, settings, make_agent, build_payload,
                                            text_message, llm, sender):
        make_agent()

        report = handle_webhook(db, settings, build_payload(messages=[text_message()], field="account_update"))

        assert report.results == []
        assert _count(db, messages) == 0


class TestRedeliveryAfterFailure:

    def _db_down(self):
        return OperationalError("INSERT", {}, Exception("MySQL server has gone away"))

    def test_failed_inbound_store_is_retried(self, client, db, make_agent, build_payload,
                                             text_message, llm, sender):
        make_agent()
        payload = build_payload(messages=[text_message()])

        with patch("nomadev_wa.services.wa_gateway.insert_message", side_effect=self._db_down()):
            first = client.post(URL, json=payload)
        second = client.post(URL, json=payload)

        assert first.json()["results"][0]["stage"] == "store_inbound"
        assert second.json()["results"][0]["outcome"] == "ok"
        assert _count(db, messages, messages.c.direction == "inbound") == 1
        assert sender.call_count == 1

    def test_failed_conversation_resolve_is_retried(self, client, db, make_agent, build_payload,
                                                    text_message, llm, sender):
        make_agent()
        payload = build_payload(messages=[text_message()])

        with patch("nomadev_wa.services.wa_gateway.resolve_conversation", side_effect=self._db_down()):
            first = client.post(URL, json=payload)
        second = client.post(URL, json=payload)

        assert first.json()["results"][0]["stage"] == "resolve_conversation"
        assert second.json()["results"][0]["outcome"] == "ok"
        assert _count(db, messages, messages.c.direction == "inbound") == 1

    def test_stored_message_stays_deduplicated(self, client, db, make_agent, build_payload,
                                               text_message, sender):
        make_agent()
        payload = build_payload(messages=[text_message()])

        with patch("nomadev_wa.services.wa_gateway.chat_completion", side_effect=LLMError("HTTP 500")):
            client.post(URL, json=payload)
            r = client.post(URL, json=payload)

        assert r.json()["results"][0]["reason"] == "duplicate"
        assert _count(db, messages, messages.c.direction == "inbound") == 1
