import json
import threading

import aiohttp
import pytest

from evframe.server import Output, OutputState, Server, WebsocketSession


def test_pop_output_on_empty_session():
    session = WebsocketSession()
    assert session.pop_output() == Output(OutputState.EMPTY, "")


def test_pop_output_states_follow_queue():
    session = WebsocketSession()
    session.push_output_data("a")
    session.push_output_data("b")
    assert session.pop_output() == Output(OutputState.MORE_DATA, "a")
    assert session.pop_output() == Output(OutputState.LAST_DATA, "b")
    assert session.pop_output().state is OutputState.EMPTY


def test_push_output_data_notifies():
    calls = []
    session = WebsocketSession(on_output=lambda: calls.append(1))
    session.push_output_data("a")
    session.push_output_data("b")
    assert len(calls) == 2


def test_finish_input_joins_and_resets():
    session = WebsocketSession()
    session.add_input("a")
    session.add_input("b")
    assert session.finish_input() == "ab"
    assert session.finish_input() == ""


def test_run_without_handler_raises():
    with pytest.raises(RuntimeError, match="null incoming message handler"):
        Server().run(None, ".", 0)


@pytest.fixture
def running_server(tmp_path):
    (tmp_path / "index.html").write_text("<h1>hi</h1>")
    (tmp_path / "clip.mp4").write_bytes(b"\x00\x01")
    received = []

    def handler(text):
        received.append(text)
        data = json.loads(text)
        return {"echo": data} if data.get("reply") else None

    server = Server(host="127.0.0.1")
    thread = threading.Thread(target=server.run, args=(handler, str(tmp_path), 0), daemon=True)
    thread.start()
    assert server.started.wait(10)
    yield server, received
    server.stop()
    thread.join(10)
    assert not thread.is_alive()


@pytest.mark.asyncio
async def test_serves_index_document(running_server):
    server, _ = running_server
    async with aiohttp.ClientSession() as client:
        async with client.get(f"http://127.0.0.1:{server.port}/") as response:
            assert response.status == 200
            assert await response.text() == "<h1>hi</h1>"


@pytest.mark.asyncio
async def test_missing_file_is_404(running_server):
    server, _ = running_server
    async with aiohttp.ClientSession() as client:
        async with client.get(f"http://127.0.0.1:{server.port}/nothing.html") as response:
            assert response.status == 404


@pytest.mark.asyncio
async def test_mp4_uses_extra_mime_type(running_server):
    server, _ = running_server
    async with aiohttp.ClientSession() as client:
        async with client.get(f"http://127.0.0.1:{server.port}/clip.mp4") as response:
            assert response.content_type == "application/x-mp4"
            assert await response.read() == b"\x00\x01"


@pytest.mark.asyncio
async def test_websocket_reply(running_server):
    server, received = running_server
    async with aiohttp.ClientSession() as client:
        async with client.ws_connect(
            f"http://127.0.0.1:{server.port}/", protocols=("everest-controller",)
        ) as ws:
            assert ws.protocol == "everest-controller"
            await ws.send_str(json.dumps({"reply": True, "n": 1}))
            reply = await ws.receive_json(timeout=10)
    assert reply == {"echo": {"reply": True, "n": 1}}
    assert json.loads(received[0]) == {"reply": True, "n": 1}


@pytest.mark.asyncio
async def test_push_reaches_connected_client(running_server):
    server, received = running_server
    async with aiohttp.ClientSession() as client:
        async with client.ws_connect(
            f"http://127.0.0.1:{server.port}/", protocols=("everest-controller",)
        ) as ws:
            await ws.send_str(json.dumps({"reply": False}))
            await ws.send_str(json.dumps({"reply": True}))
            first = await ws.receive_json(timeout=10)
            server.push({"event": "changed"})
            pushed = await ws.receive_json(timeout=10)
    assert first == {"echo": {"reply": True}}
    assert pushed == {"event": "changed"}
    assert len(received) == 2