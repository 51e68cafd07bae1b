CHAIN_ID_BSC = 56
CHAIN_ID_HARDHAT = 31337
CHAIN_ID_GANACHE = 1337

LOCAL_CHAIN_IDS: set[int] = {CHAIN_ID_HARDHAT, CHAIN_ID_GANACHE}

# The protocol is deployed on BSC; every transaction flow targets it.
TARGET_CHAIN_ID = CHAIN_ID_BSC

BSC_RPC_URL = "https://bsc-dataseed1.binance.org"
LOCAL_RPC_URL = "http://127.0.0.1:8545"

DEFAULT_RPC_URLS: dict[int, str] = {
    CHAIN_ID_BSC: BSC_RPC_URL,
    CHAIN_ID_HARDHAT: LOCAL_RPC_URL,
    CHAIN_ID_GANACHE: LOCAL_RPC_URL,
}

POA_MIDDLEWARE_CHAIN_IDS: set[int] = {CHAIN_ID_BSC}

PRE_EIP_1559_CHAIN_IDS: set[int] = {CHAIN_ID_BSC}


def is_local_chain(chain_id: int | None) -> bool:
    return chain_id is not None and int(chain_id) in LOCAL_CHAIN_IDS


def read_chain_id(chain_id: int | None) -> int:
    """Chain whose contracts are read for a wallet on ``chain_id``.

    Only explicit local dev chains read locally. Anything else (including no
    chain at all or a wrong network) reads BSC so the user still sees data.
    """
    return int(chain_id) if is_local_chain(chain_id) else CHAIN_ID_BSC
