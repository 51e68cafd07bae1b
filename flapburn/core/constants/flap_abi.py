from __future__ import annotations

from typing import Any

# Minimal ABIs for the FLAP burn / dividend / subscription contracts.

BURN_TOKEN_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "token",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "rootInviter",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "inviterOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "burnedValueOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalBurnedValue",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "inviteeCount",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "minBurnValue",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "burn",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "inviter", "type": "address"},
        ],
        "outputs": [],
    },
]

BURN_DIVIDEND_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getUnpaidDividendBNB",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getUnpaidDividendToken",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "claimBNB",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "claimToken",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
]

LOSS_DIVIDEND_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "token",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "pool",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "minTokenReserve",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "minBnbReserve",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "userSnapshots",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [
            {"name": "costBasis", "type": "uint256"},
            {"name": "soldValue", "type": "uint256"},
            {"name": "dividendReceived", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getCachedLoss",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [
            {"name": "loss", "type": "uint256"},
            {"name": "valid", "type": "bool"},
        ],
    },
    {
        "type": "function",
        "name": "getUnpaidDividend",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "cachedLoss", "type": "uint256"},
        ],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalDividendsAllocated",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalDividendsClaimed",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "claim",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
]

NFT_DIVIDEND_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getUserInfo",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [
            {"name": "performance", "type": "uint256"},
            {"name": "nftCount", "type": "uint256"},
            {"name": "totalDividends", "type": "uint256"},
            {"name": "pendingDividends", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getClaimableNFTCount",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "claim",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "claimNFT",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
]

NFT_SUBSCRIPTION_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "pricePerShare",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getTwoLevelSubscribed",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "teamSubscribed",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "uint256"}],
    },
    {
        "type": "function",
        "name": "inviterOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "rootInviter",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
    {
        "type": "function",
        "name": "subscribe",
        "stateMutability": "payable",
        "inputs": [
            {"name": "shares", "type": "uint256"},
            {"name": "inviter", "type": "address"},
        ],
        "outputs": [],
    },
]

PAIR_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getReserves",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
            {"name": "blockTimestampLast", "type": "uint32"},
        ],
    },
    {
        "type": "function",
        "name": "token0",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "address"}],
    },
]
