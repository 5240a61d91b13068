"""Minimal contract ABIs for USDC and the burn-and-mint messaging contracts."""

ERC20_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

TOKEN_MESSENGER_ABI = [
    {
        "type": "function",
        "name": "depositForBurn",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "destinationDomain", "type": "uint32"},
            {"name": "mintRecipient", "type": "bytes32"},
            {"name": "burnToken", "type": "address"},
        ],
        "outputs": [{"name": "nonce", "type": "uint64"}],
    },
]

MESSAGE_TRANSMITTER_ABI = [
    {
        "type": "function",
        "name": "receiveMessage",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "message", "type": "bytes"}, {"name": "attestation", "type": "bytes"}],
        "outputs": [{"name": "success", "type": "bool"}],
    },
    {
        "type": "event",
        "name": "MessageSent",
        "anonymous": False,
        "inputs": [{"name": "message", "type": "bytes", "indexed": False}],
    },
]
