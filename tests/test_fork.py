"""
End-to-end fork pipeline tests.

Covers:
- Fetch, classify, merge and write against an in-memory node
- Reuse of a cached snapshot without a node
- Local inputs validated before the node is contacted
- CLI option handling
"""

import asyncio
import json

import pytest

from chainfork.blockchain.cli import fork_cli
from chainfork.blockchain.core.fork import ForkBuilder, ForkPaths, load_runtime_code
from chainfork.blockchain.rpc.metadata import JsonSubsystemSource
from chainfork.protocol.config.options import ClassifierRules, ForkOptions
from chainfork.protocol.config.params import (
    CODE_KEY, DEV_ALICE_ACCOUNT, FORCE_ERA_KEY, FORCE_NONE, LAYOUTS, SUDO_KEY, SYSTEM_ACCOUNT_PREFIX,
)
from chainfork.protocol.crypto.hash import pallet_prefix
from chainfork.protocol.types.common import FetchMode, MalformedDocumentError, PreconditionError

BALANCES = pallet_prefix("Balances")
AURA = pallet_prefix("Aura")
PEAQ_DID = pallet_prefix("PeaqDid")


@pytest.fixture
def chain_storage():
    storage = {CODE_KEY: "0xc0de"}
    for i in range(3):
        storage[f"{SYSTEM_ACCOUNT_PREFIX}{i:064x}"] = f"0x{i:02x}"
        storage[f"{BALANCES}{i:02x}"] = "0x01"
        storage[f"{AURA}{i:02x}"] = "0x02"
    for i in range(20):
        storage[f"{PEAQ_DID}{i:04x}"] = "0x03"
    return storage


@pytest.fixture
def datadir(tmp_path, template_spec):
    (tmp_path / "fork.json").write_text(json.dumps(template_spec))
    (tmp_path / "pallets.json").write_text(json.dumps(["System", "Balances", "Aura", "PeaqDid", "Utility"]))
    (tmp_path / "runtime.hex").write_text("beef\n")
    return tmp_path


def make_builder(datadir, layout="parachain", **options):
    paths = ForkPaths.in_data_dir(str(datadir))
    paths.output = datadir / "out" / "fork.json"
    options.setdefault("page_size", 4)
    return ForkBuilder(
        options=ForkOptions(**options),
        paths=paths,
        subsystems=JsonSubsystemSource(str(datadir / "pallets.json")),
        layout=LAYOUTS[layout],
    )


def read_top(path):
    return json.loads(path.read_text())["genesis"]["raw"]["top"]


@pytest.mark.asyncio
async def test_fork_end_to_end(datadir, make_service, chain_storage):
    service = make_service(chain_storage)
    builder = make_builder(datadir, sudo_key="0x1234")

    report = await builder.run(service)

    forked = json.loads(builder.paths.output.read_text())
    top = forked["genesis"]["raw"]["top"]
    assert forked["name"] == "Dev-fork"
    assert all(k in top for k in chain_storage if k.startswith((SYSTEM_ACCOUNT_PREFIX, BALANCES, PEAQ_DID)))
    assert not any(k.startswith(AURA) for k in top)
    assert top[CODE_KEY] == "0xbeef"
    assert top[FORCE_ERA_KEY] == FORCE_NONE
    assert top[SUDO_KEY] == "0x1234"
    assert top["0xaa"] == "0x01"
    assert report.top_entries == len(top)
    assert builder.snapshots.has_cached_snapshot()
    assert service.block_hash_calls == 1


@pytest.mark.asyncio
async def test_cached_snapshot_reused_without_node(datadir, make_service, chain_storage):
    service = make_service(chain_storage)
    await make_builder(datadir).run(service)
    calls = len(service.keys_paged_calls)

    builder = make_builder(datadir)
    await builder.run(service=None)

    assert len(service.keys_paged_calls) == calls
    assert f"{BALANCES}00" in read_top(builder.paths.output)


@pytest.mark.asyncio
async def test_refresh_refetches(datadir, make_service, chain_storage):
    service = make_service(chain_storage)
    await make_builder(datadir).run(service)
    service.storage[f"{BALANCES}ff"] = "0x09"
    service.keys = sorted(service.storage)

    builder = make_builder(datadir)
    await builder.run(service, refresh=True)

    assert read_top(builder.paths.output)[f"{BALANCES}ff"] == "0x09"


@pytest.mark.asyncio
async def test_pinned_block(datadir, make_service, chain_storage):
    service = make_service(chain_storage, block_hash="0xfeed")

    metadata = await make_builder(datadir, at="0xfeed").refresh_snapshot(service)

    assert metadata.block_hash == "0xfeed"
    assert service.block_hash_calls == 0


@pytest.mark.asyncio
async def test_fetch_without_pallet_list(datadir, make_service, chain_storage):
    (datadir / "pallets.json").unlink()
    service = make_service(chain_storage)

    metadata = await make_builder(datadir).refresh_snapshot(service)

    assert metadata.pairs_count == len(chain_storage)
    assert metadata.bounded_prefixes == []


@pytest.mark.asyncio
async def test_fetch_with_restricted_pallets_needs_pallet_list(datadir, make_service, chain_storage):
    (datadir / "pallets.json").unlink()
    service = make_service(chain_storage)

    with pytest.raises(PreconditionError):
        await make_builder(datadir, layout="peaq").refresh_snapshot(service)

    assert service.keys_paged_calls == []


@pytest.mark.asyncio
async def test_restricted_pallet_bounded(datadir, make_service, chain_storage):
    service = make_service(chain_storage)
    builder = make_builder(datadir, layout="peaq", fetch_volume_limit=8, merge_volume_limit=5)

    report = await builder.run(service)

    assert builder.snapshots.load_metadata().bounded_prefixes == [PEAQ_DID]
    assert report.bounded_per_prefix == {PEAQ_DID: 5}
    assert sum(1 for k in read_top(builder.paths.output) if k.startswith(PEAQ_DID)) == 5


def test_explicit_rules_override_layout(datadir):
    builder = make_builder(datadir, layout="peaq", rules=ClassifierRules(restricted=[], keep_collator=True))

    prefixes = builder.classify()

    assert prefixes.bounded == []
    assert AURA in prefixes.keep
    assert PEAQ_DID in prefixes.keep
    assert prefixes.keep[0] == SYSTEM_ACCOUNT_PREFIX


@pytest.mark.asyncio
async def test_bulk_mode(datadir, make_service, chain_storage):
    service = make_service(chain_storage)
    builder = make_builder(datadir, fetch_mode=FetchMode.BULK, chunks_level=0)

    await builder.run(service)

    assert service.pairs_calls == ["0x"]
    assert f"{BALANCES}02" in read_top(builder.paths.output)


@pytest.mark.asyncio
async def test_malformed_template_fails_before_fetch(datadir, make_service, chain_storage):
    (datadir / "fork.json").write_text(json.dumps({"name": "Dev", "id": "dev", "genesis": {}}))
    service = make_service(chain_storage)

    with pytest.raises(MalformedDocumentError):
        await make_builder(datadir).run(service)

    assert service.block_hash_calls == 0
    assert service.keys_paged_calls == []


@pytest.mark.asyncio
async def test_missing_runtime_fails_before_fetch(datadir, make_service, chain_storage):
    (datadir / "runtime.hex").unlink()
    service = make_service(chain_storage)

    with pytest.raises(PreconditionError):
        await make_builder(datadir).run(service)

    assert service.keys_paged_calls == []


@pytest.mark.asyncio
async def test_keep_template_code_without_runtime(datadir, make_service, chain_storage):
    (datadir / "runtime.hex").unlink()
    builder = make_builder(datadir, update_code=False)

    await builder.run(make_service(chain_storage))

    assert read_top(builder.paths.output)[CODE_KEY] == "0xdead"


@pytest.mark.asyncio
async def test_no_snapshot_and_no_node(datadir):
    with pytest.raises(PreconditionError):
        await make_builder(datadir).run(service=None)


def test_load_runtime_code(tmp_path):
    wasm = tmp_path / "runtime.wasm"
    wasm.write_bytes(b"\x00asm")
    hexfile = tmp_path / "runtime.hex"
    hexfile.write_text("0xabcd")

    assert load_runtime_code(wasm) == "0x0061736d"
    assert load_runtime_code(hexfile) == "0xabcd"
    with pytest.raises(PreconditionError):
        load_runtime_code(tmp_path / "missing.wasm")


def test_paths_in_data_dir(datadir):
    paths = ForkPaths.in_data_dir(str(datadir))

    assert paths.template == paths.output == datadir / "fork.json"
    assert paths.snapshot == datadir / "storage.json"
    assert paths.source is None
    assert paths.runtime == datadir / "runtime.hex"


def test_cli_options(monkeypatch, datadir):
    monkeypatch.delenv("SUDO_KEY", raising=False)
    monkeypatch.setenv("KEEP_ASSET", "true")
    monkeypatch.setenv("ALICE", "1")
    monkeypatch.setenv("FORK_CHUNKS_LEVEL", "2")
    args = fork_cli.make_parser().parse_args(
        ["--datadir", str(datadir), "run", "--mode", "bulk", "--parallel", "--ignore-wasm-update"]
    )

    options = fork_cli.build_options(args)

    assert options.chunks_level == 2
    assert options.fetch_mode == FetchMode.BULK
    assert options.parallel
    assert not options.update_code
    assert options.rules.keep_asset
    assert not options.rules.keep_collator
    assert options.sudo_key == DEV_ALICE_ACCOUNT


def test_cli_sudo_alias():
    assert fork_cli.resolve_sudo_key("Alice") == DEV_ALICE_ACCOUNT
    assert fork_cli.resolve_sudo_key("0x12") == "0x12"
    assert fork_cli.resolve_sudo_key(None) is None


def test_cli_rejects_bad_sudo_key(datadir):
    with pytest.raises(SystemExit) as exc:
        fork_cli.main(["--datadir", str(datadir), "build", "--sudo-key", "bob"])

    assert exc.value.code == 2


def test_cli_build_without_snapshot_exits(datadir):
    with pytest.raises(SystemExit) as exc:
        fork_cli.main(["--datadir", str(datadir), "build"])

    assert exc.value.code == 1


def test_cli_build_from_cache(datadir, make_service, chain_storage, tmp_path):
    asyncio.run(make_builder(datadir).refresh_snapshot(make_service(chain_storage)))
    output = tmp_path / "built.json"
    metrics_file = tmp_path / "metrics.prom"

    fork_cli.main([
        "--datadir", str(datadir), "--output", str(output), "--metrics-file", str(metrics_file),
        "build", "--sudo-key", "alice",
    ])

    top = read_top(output)
    assert top[SUDO_KEY] == DEV_ALICE_ACCOUNT
    assert f"{SYSTEM_ACCOUNT_PREFIX}{0:064x}" in top
    assert "chainfork_genesis_top_entries" in metrics_file.read_text()


def test_layout_without_always_included_prefixes(datadir):
    builder = make_builder(datadir)
    builder.layout = LAYOUTS["parachain"].override(always_included_prefixes=[])

    prefixes = builder.classify()

    assert LAYOUTS["parachain"].always_included_prefixes == [SYSTEM_ACCOUNT_PREFIX]
    assert SYSTEM_ACCOUNT_PREFIX not in prefixes.keep
    assert BALANCES in prefixes.keep
