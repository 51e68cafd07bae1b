import json
import os
from pathlib import Path
from typing import Any

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import (
    DEFAULT_AUTO_CONNECT_DELAY_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from flapburn.core.constants.chains import (
    CHAIN_ID_BSC,
    DEFAULT_RPC_URLS,
    read_chain_id,
)
from flapburn.core.constants.contracts import (
    CONTRACT_NAMES,
    FLAP_BY_CHAIN,
    FlapContracts,
)

CONFIG_ENV_VARS = ("FLAPBURN_CONFIG_PATH", "FLAPBURN_CONFIG")
CONFIG_FILENAME = "config.json"

_MONITOR_API_BSC = "https://tdrs.web3shopcn.com/api"
_MONITOR_API_LOCAL = "http://127.0.0.1:3001/api"


def _repo_root() -> Path | None:
    """Nearest directory holding ``pyproject.toml``, from cwd then this file."""
    for start in (Path.cwd(), Path(__file__).parent):
        here = start.resolve()
        found = next(
            (d for d in (here, *here.parents) if (d / "pyproject.toml").is_file()),
            None,
        )
        if found is not None:
            return found
    return None


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Explicit path, else the env var, else ``config.json`` at the repo root.

    A relative env path is taken from the repo root.
    """
    if path is not None:
        return Path(path).expanduser()
    env_value = next(
        (v for v in (os.environ.get(k, "").strip() for k in CONFIG_ENV_VARS) if v), ""
    )
    candidate = Path(env_value or CONFIG_FILENAME).expanduser()
    if candidate.is_absolute():
        return candidate
    root = _repo_root()
    return root / candidate if root is not None else candidate


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.is_file():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    try:
        parsed = json.loads(cfg_path.read_text())
    except (OSError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    # Mutated in place: modules holding a reference to CONFIG see the change.
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    set_config(load_config_json(path, require_exists=require_exists))


def get_rpc_urls() -> dict[str, Any]:
    return CONFIG.get("rpc_urls", {})


def get_rpcs_for_chain_id(chain_id: int) -> list[str]:
    mapping = get_rpc_urls()
    rpcs = mapping.get(str(chain_id))
    if rpcs is None:
        rpcs = mapping.get(chain_id)  # allow int keys
    if rpcs is None:
        rpcs = DEFAULT_RPC_URLS.get(int(chain_id))
    if rpcs is None:
        raise ValueError(f"No RPCs configured for chain ID {chain_id}")
    if isinstance(rpcs, str):
        return [rpcs]
    return list(rpcs)


def get_contracts(chain_id: int | None) -> FlapContracts:
    """Contract registry for the chain a wallet is connected to.

    Unknown or missing chain ids resolve to the BSC deployment. Per-chain
    overrides under ``contracts`` in the config are merged over the built-ins.
    """
    target = read_chain_id(chain_id)
    contracts: dict[str, str] = dict(FLAP_BY_CHAIN.get(target, FLAP_BY_CHAIN[CHAIN_ID_BSC]))
    overrides = CONFIG.get("contracts", {})
    chain_overrides = overrides.get(str(target)) or overrides.get(target) or {}
    for name in CONTRACT_NAMES:
        value = chain_overrides.get(name)
        if isinstance(value, str) and value.strip():
            contracts[name] = value.strip()
    for name in CONTRACT_NAMES:
        contracts.setdefault(name, ZERO_ADDRESS)
    return contracts  # type: ignore[return-value]


def is_offchain_enabled() -> bool:
    return bool(CONFIG.get("offchain", {}).get("enabled", False))


def get_monitor_api_base_url(chain_id: int | None) -> str:
    offchain = CONFIG.get("offchain", {})
    api_url = offchain.get("api_base_url")
    if api_url:
        return str(api_url).strip().rstrip("/")
    return _MONITOR_API_BSC if chain_id == CHAIN_ID_BSC else _MONITOR_API_LOCAL


def get_poll_interval_seconds() -> float:
    polling = CONFIG.get("polling", {})
    try:
        value = float(polling.get("interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS))
    except (TypeError, ValueError):
        return DEFAULT_POLL_INTERVAL_SECONDS
    return value if value > 0 else DEFAULT_POLL_INTERVAL_SECONDS


def get_auto_connect_delay_seconds() -> float:
    polling = CONFIG.get("polling", {})
    try:
        value = float(
            polling.get("auto_connect_delay_seconds", DEFAULT_AUTO_CONNECT_DELAY_SECONDS)
        )
    except (TypeError, ValueError):
        return DEFAULT_AUTO_CONNECT_DELAY_SECONDS
    return value if value >= 0 else DEFAULT_AUTO_CONNECT_DELAY_SECONDS


def get_wallet(label: str | None = None) -> dict[str, Any] | None:
    wallets = [w for w in CONFIG.get("wallets", []) if isinstance(w, dict)]
    if not wallets:
        return None
    if label is None:
        return wallets[0]
    return next((w for w in wallets if w.get("label") == label), None)
