# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, List, Optional

# Fetching
DEFAULT_ENDPOINT = "http://localhost:9933"  # HTTP, the WS endpoint has a response size limit
DEFAULT_CHUNKS_LEVEL = 1
DEFAULT_PAGE_SIZE = 1000                    # node side maximum for state_getKeysPaged
DEFAULT_MAX_CONCURRENCY = 32
FETCH_VOLUME_LIMIT = 100_000
MERGE_VOLUME_LIMIT = 50_000
DEFAULT_REQUEST_TIMEOUT = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 1.0

# Writing
WRITE_BATCH_SIZE = 50_000
SNAPSHOT_FORMAT_VERSION = "1.0.0"

# Well-known storage
SYSTEM_ACCOUNT_PREFIX = "0x26aa394eea5630e07c48ae0c9558cef7b99d880ec681799c0cf30e8886371da9"
LAST_RUNTIME_UPGRADE_KEY = "0x26aa394eea5630e07c48ae0c9558cef7f9cce9c888469bb1a0dceaa129672ef8"
CODE_KEY = "0x3a636f6465"  # ":code"
FORCE_ERA_KEY = "0x5f3e4907f716ac89b6347d15ececedcaf7dad0317324aecae8744b87fc95f2f3"
FORCE_NONE = "0x02"
LAST_RELAY_BLOCK_KEY = "0x45323df7cc47150b3930e2666b0aa313a2bca190d36bd834cc73a38fc213ecbd"
LAST_RELAY_BLOCK_RESET = "0x00000000"
SUDO_KEY = "0x5c0d1176a568c1f92944340dbfed9e9c530ebca703c85910e7164cb7d1c9e47b"
DEV_ALICE_ACCOUNT = "0xd43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d"

# Pallet classification
SKIPPED_PALLETS = ["System", "Babe", "Grandpa", "GrandpaFinality", "FinalityTracker"]
SKIPPED_COLLATOR_PALLETS = ["Authorship", "Aura", "AuraExt", "ParachainStaking", "Session"]
SKIPPED_ASSET_PALLETS = ["Assets", "XcAssetConfig", "EVM", "Ethereum"]
SKIPPED_PARACHAIN_PALLETS = ["ParachainSystem", "ParachainInfo"]


class ChainLayout:
    """
    Storage layout constants of a chain family.

    Any key set to None disables the genesis patch that uses it.
    """
    def __init__(self,
                 layout_id: str,
                 always_included_prefixes: Optional[List[str]] = None,
                 restricted_pallets: Optional[List[str]] = None,
                 last_runtime_upgrade_key: Optional[str] = LAST_RUNTIME_UPGRADE_KEY,
                 code_key: Optional[str] = CODE_KEY,
                 force_era_key: Optional[str] = FORCE_ERA_KEY,
                 force_era_value: str = FORCE_NONE,
                 last_relay_block_key: Optional[str] = None,
                 last_relay_block_value: str = LAST_RELAY_BLOCK_RESET,
                 sudo_key: Optional[str] = SUDO_KEY,
                 # Keys of pallets that are absent in the forked topology
                 removed_keys: Optional[List[str]] = None):
        self.layout_id = layout_id
        self.always_included_prefixes = (
            [SYSTEM_ACCOUNT_PREFIX] if always_included_prefixes is None else list(always_included_prefixes)
        )
        self.restricted_pallets = list(restricted_pallets or [])
        self.last_runtime_upgrade_key = last_runtime_upgrade_key
        self.code_key = code_key
        self.force_era_key = force_era_key
        self.force_era_value = force_era_value
        self.last_relay_block_key = last_relay_block_key
        self.last_relay_block_value = last_relay_block_value
        self.sudo_key = sudo_key
        self.removed_keys = list(removed_keys or [])

    def override(self, **changes) -> "ChainLayout":
        """Returns a copy with the given fields replaced."""
        fields = dict(vars(self))
        for name, value in changes.items():
            if name not in fields:
                raise ValueError(f"Unknown chain layout field: {name}")
            fields[name] = value
        return ChainLayout(**fields)


LAYOUTS: Dict[str, ChainLayout] = {
    "substrate": ChainLayout(
        layout_id="substrate",
    ),
    "parachain": ChainLayout(
        layout_id="parachain",
        # Relay chain block number must strictly increase between parachain blocks
        last_relay_block_key=LAST_RELAY_BLOCK_KEY,
    ),
    "peaq": ChainLayout(
        layout_id="peaq",
        last_relay_block_key=LAST_RELAY_BLOCK_KEY,
        restricted_pallets=["PeaqDid", "PeaqStorage", "PeaqRbac"],
    ),
}

DEFAULT_LAYOUT = LAYOUTS["parachain"]


def get_layout(name: str) -> ChainLayout:
    try:
        return LAYOUTS[name]
    except KeyError:
        raise ValueError(f"Unknown chain layout '{name}' (known: {', '.join(sorted(LAYOUTS))})")
