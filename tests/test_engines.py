import asyncio
from pathlib import Path

import pytest

from engines import EmbeddedEngine, EngineError, ExternalEngine, get_engine
from models.config import ServerConfig
from runtime.rcon import OOB_HEADER, RconClient
from runtime.savegame import decode_savegame
from runtime.supervisor import ProcessSupervisor


def test_factory_selects_engine():
    assert isinstance(get_engine("embedded"), EmbeddedEngine)
    assert isinstance(get_engine("external", ServerConfig(basedir="/q")), ExternalEngine)
    with pytest.raises(ValueError):
        get_engine("telnet")


@pytest.mark.asyncio
async def test_embedded_requires_start():
    engine = EmbeddedEngine()
    with pytest.raises(EngineError):
        await engine.execute("status")


@pytest.mark.asyncio
async def test_embedded_console_commands():
    engine = EmbeddedEngine(ServerConfig(mode="embedded", map="e1m1"))
    lines = []
    engine.subscribe(lines.append)
    await engine.start()

    assert "[Embedded engine starting...]" in lines
    assert "Loading map e1m1" in lines
    status = await engine.execute("status")
    assert "map:     e1m1" in status
    assert "players: 0 active" in status

    assert await engine.execute("addbot ranger") == "ranger entered the game"
    assert "players: 1 active" in await engine.execute("status")
    assert await engine.execute("kick nobody") == "Player not found."
    assert await engine.execute("echo hello  world") == "hello world"
    assert await engine.execute("frobnicate") == 'Unknown command "frobnicate"'
    assert await engine.execute("   ") is None


@pytest.mark.asyncio
async def test_embedded_save_writes_decodable_text():
    engine = EmbeddedEngine(ServerConfig(mode="embedded", game="id1"))
    await engine.start()
    assert await engine.execute("save snapshot") == "Not playing a local game."

    await engine.execute("map e1m2")
    await engine.execute("addbot ranger")
    reply = await engine.execute("save snapshot")
    assert reply == "Saving game to id1/snapshot.sav..."
    assert await engine.wait_for_save("snapshot", timeout=0.01) is True

    content = engine.read_file("/ID1/SNAPSHOT.sav")
    entities = decode_savegame(content)
    assert [e.classname for e in entities] == [
        "worldspawn",
        "player",
        "info_player_start",
        "light",
    ]
    assert entities[0].properties["model"] == "maps/e1m2.bsp"


@pytest.mark.asyncio
async def test_embedded_stop_resets_state():
    engine = EmbeddedEngine(ServerConfig(mode="embedded", map="start"))
    exits = []
    engine.subscribe(lambda line: None, exits.append)
    await engine.start()
    await engine.execute("save s1")
    await engine.stop()

    assert exits == [0]
    assert not engine.is_running()
    assert engine.files == {}
    assert engine.map_name == ""
    assert await engine.wait_for_save("s1", timeout=0.01) is False


@pytest.mark.asyncio
async def test_external_engine_wires_supervisor_and_rcon(process_factory, endpoint):
    config = ServerConfig(basedir="/q", rcon_password="pw", rcon_port=27600)
    rcon = RconClient("127.0.0.1", 27600, "pw", timeout=1.0, endpoint_factory=endpoint)
    engine = ExternalEngine(
        config, supervisor=ProcessSupervisor(process_factory=process_factory), rcon=rcon
    )
    lines = []
    engine.subscribe(lines.append)

    await engine.start()
    assert engine.is_running()
    assert "+set rcon_password pw" in lines[0]

    task = asyncio.create_task(engine.execute("status"))
    await asyncio.sleep(0)
    endpoint.reply(OOB_HEADER + b"map: e1m1")
    assert await task == "map: e1m1"

    await engine.stop()
    assert not engine.is_running()
    assert endpoint.transport.closed
    await engine.supervisor.wait_closed()


def test_external_read_file(tmp_path: Path):
    (tmp_path / "id1").mkdir()
    (tmp_path / "id1" / "Snapshot.SAV").write_text('{\n"classname" "worldspawn"\n}\n')
    engine = ExternalEngine(ServerConfig(basedir=str(tmp_path)))

    assert engine.read_file("/id1/snapshot.sav").startswith("{")
    assert engine.read_file("id1/Snapshot.SAV").startswith("{")
    assert engine.read_file("/missing/snapshot.sav") is None
    assert engine.read_file("snapshot") is None
