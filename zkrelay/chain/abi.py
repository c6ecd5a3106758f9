"""Minimal ABIs for the bridge and verifying contracts."""

TARGET_CONTRACT_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "attestationId", "type": "uint256"},
            {"internalType": "bytes32[]", "name": "merklePath", "type": "bytes32[]"},
            {"internalType": "uint256", "name": "leafCount", "type": "uint256"},
            {"internalType": "uint256", "name": "index", "type": "uint256"},
        ],
        "name": "verifyIncomeProof",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "", "type": "address"}],
        "name": "hasVerifiedIncome",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "attestationId", "type": "uint256"},
        ],
        "name": "IncomeVerified",
        "type": "event",
    },
    {
        "inputs": [{"internalType": "string", "name": "reason", "type": "string"}],
        "name": "InvalidProofAttestation",
        "type": "error",
    },
]

BRIDGE_CONTRACT_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "attestationId", "type": "uint256"},
            {"indexed": True, "internalType": "bytes32", "name": "root", "type": "bytes32"},
        ],
        "name": "AttestationPosted",
        "type": "event",
    },
]

ATTESTATION_POSTED_SIGNATURE = "AttestationPosted(uint256,bytes32)"
INCOME_VERIFIED_SIGNATURE = "IncomeVerified(address,uint256)"
INVALID_PROOF_ERROR_SIGNATURE = "InvalidProofAttestation(string)"
