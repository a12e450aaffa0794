import asyncio
import json

import pytest
import websockets

from openbpl.certstream import CertstreamSource, extract_domains
from openbpl.models import Event


def _entry(cn="", sans="", message_type="certificate_update", update_type="X509LogEntry"):
    return {
        "message_type": message_type,
        "data": {
            "update_type": update_type,
            "leaf_cert": {
                "subject": {"CN": cn},
                "extensions": {"subjectAltName": sans},
            },
        },
    }


def test_extract_domains_cn_and_dns_sans():
    entry = _entry(
        cn="PayPal-Login.Example.com",
        sans="DNS:paypal-login.example.com, DNS:WWW.PAYPAL-LOGIN.EXAMPLE.COM, IP Address:10.0.0.1",
    )
    assert extract_domains(entry) == [
        "paypal-login.example.com",
        "paypal-login.example.com",
        "www.paypal-login.example.com",
    ]


def test_extract_domains_empty_entry():
    assert extract_domains({}) == []
    assert extract_domains(_entry()) == []


def test_extract_domains_rejects_bad_shape():
    with pytest.raises(ValueError):
        extract_domains({"data": "not an object"})


def test_should_process_rules():
    source = CertstreamSource(keywords=["PayPal"])
    assert source.should_process("paypal-login.example.com") is True
    assert source.should_process("*.paypal.example.com") is False
    assert source.should_process("pay") is False
    assert source.should_process("unrelated.example.com") is False


def test_should_process_without_keywords():
    assert CertstreamSource().should_process("paypal.example.com") is False


def test_matched_keywords_keeps_order_and_case():
    source = CertstreamSource(keywords=["Amazon", "paypal", "apple"])
    assert source.matched_keywords("PAYPAL-amazon.example.com") == ["Amazon", "paypal"]
    assert source.matched_keywords("nothing.example.com") == []


@pytest.mark.asyncio
async def test_process_message_creates_event():
    source = CertstreamSource(keywords=["paypal"])
    queue = asyncio.Queue()
    sans = "DNS:paypal-login.example.com, DNS:other.example.com"
    message = json.dumps(_entry(cn="paypal-login.example.com", sans=sans))
    await source.process_message(message, queue)

    assert queue.qsize() == 2
    first = queue.get_nowait()
    second = queue.get_nowait()
    assert isinstance(first, Event)
    assert first.domain == second.domain == "paypal-login.example.com"
    assert first.source == "certstream"
    assert first.type == "certificate_update"
    assert first.id.startswith("cert_")
    assert first.data == {
        "cn": "paypal-login.example.com",
        "sans": sans,
        "update_type": "X509LogEntry",
    }
    assert first.metadata == {"matched_keywords": ["paypal"]}


@pytest.mark.asyncio
async def test_process_message_ignores_other_message_types():
    source = CertstreamSource(keywords=["paypal"])
    queue = asyncio.Queue()
    message = json.dumps(_entry(cn="paypal.example.com", message_type="heartbeat"))
    await source.process_message(message, queue)
    assert queue.empty()


@pytest.mark.asyncio
async def test_process_message_accepts_bytes():
    source = CertstreamSource(keywords=["paypal"])
    queue = asyncio.Queue()
    await source.process_message(json.dumps(_entry(cn="paypal.example.com")).encode(), queue)
    assert queue.get_nowait().domain == "paypal.example.com"


@pytest.mark.asyncio
async def test_process_message_invalid_json():
    source = CertstreamSource(keywords=["paypal"])
    with pytest.raises(ValueError):
        await source.process_message("{not json", asyncio.Queue())


@pytest.mark.asyncio
async def test_process_message_non_object():
    source = CertstreamSource(keywords=["paypal"])
    with pytest.raises(ValueError):
        await source.process_message("[1, 2]", asyncio.Queue())


@pytest.mark.asyncio
async def test_process_message_drops_when_queue_full():
    source = CertstreamSource(keywords=["paypal"], put_timeout=0.01)
    queue = asyncio.Queue(maxsize=1)
    queue.put_nowait("occupied")
    await source.process_message(json.dumps(_entry(cn="paypal.example.com")), queue)
    assert queue.qsize() == 1
    assert queue.get_nowait() == "occupied"


@pytest.mark.asyncio
async def test_start_retries_and_stops_on_unreachable_server():
    source = CertstreamSource(url="ws://127.0.0.1:1", reconnect_delay=0.01)
    task = asyncio.create_task(source.start(asyncio.Queue()))
    await asyncio.sleep(0.1)
    assert not task.done()
    source.stop()
    result = await asyncio.wait_for(task, 5)
    assert result is None
    assert not task.cancelled()


@pytest.mark.asyncio
async def test_start_reads_events_from_websocket():
    message = json.dumps(_entry(cn="paypal-login.example.com"))

    async def handler(websocket, *args):
        await websocket.send(message)
        await websocket.wait_closed()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        source = CertstreamSource(url=f"ws://127.0.0.1:{port}", keywords=["paypal"])
        queue = asyncio.Queue()
        task = asyncio.create_task(source.start(queue))
        event = await asyncio.wait_for(queue.get(), 5)
        source.stop()
        await asyncio.wait_for(task, 5)

    assert event.domain == "paypal-login.example.com"
    assert event.metadata["matched_keywords"] == ["paypal"]
    assert task.done() and not task.cancelled()