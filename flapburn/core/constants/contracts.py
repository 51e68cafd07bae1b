from __future__ import annotations

from typing import TypedDict

from eth_utils import to_checksum_address

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.chains import CHAIN_ID_BSC, LOCAL_CHAIN_IDS


class FlapContracts(TypedDict):
    token: str
    pair: str
    tax_fee_receiver: str
    burn_dividend: str
    performance_nft: str
    nft_dividend: str
    nft_subscription: str
    loss_dividend: str
    burn_token: str


CONTRACT_NAMES: tuple[str, ...] = tuple(FlapContracts.__annotations__)

# Per-chain deployments. Zero addresses mark contracts that are not deployed
# yet; readers skip them instead of calling into empty bytecode.
BSC_CONTRACTS: FlapContracts = {
    "token": ZERO_ADDRESS,
    "pair": ZERO_ADDRESS,
    "tax_fee_receiver": ZERO_ADDRESS,
    "burn_dividend": ZERO_ADDRESS,
    "performance_nft": to_checksum_address(
        "0x9Fa9620784C9691F4Df5d2e16fb2851D7132dB3E"
    ),
    "nft_dividend": ZERO_ADDRESS,
    "nft_subscription": to_checksum_address(
        "0xC1Cc75899e689d117e6Bc942C4c4Cb508b194B7C"
    ),
    "loss_dividend": ZERO_ADDRESS,
    "burn_token": ZERO_ADDRESS,
}

LOCAL_CONTRACTS: FlapContracts = {name: ZERO_ADDRESS for name in CONTRACT_NAMES}  # type: ignore[assignment]

FLAP_BY_CHAIN: dict[int, FlapContracts] = {
    CHAIN_ID_BSC: BSC_CONTRACTS,
    **{chain_id: LOCAL_CONTRACTS for chain_id in LOCAL_CHAIN_IDS},
}
