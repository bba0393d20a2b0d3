"""
ledger/abi.py - Interface of the deployed ProductRegistry contract.

Only the functions below are called. The three events are emitted by the
contract; ProductRegistered is read back by the reconciliation backstop.
"""


def _strings(*names):
    return [{"name": n, "type": "string"} for n in names]


def _event(name, *fields):
    return {
        "anonymous": False,
        "inputs": [{"indexed": False, "name": f, "type": "string"} for f in fields],
        "name": name,
        "type": "event",
    }


CONTRACT_ABI = [
    {
        "inputs": _strings("productId", "name", "batch", "manufacturer"),
        "name": "registerProduct",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": _strings("productId", "newStatus"),
        "name": "updateProductStatus",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": _strings("productId", "stage", "company", "location"),
        "name": "addTraceRecord",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": _strings("productId"),
        "name": "getProduct",
        "outputs": _strings("", "", "", "") + [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    _event("ProductRegistered", "productId", "name", "manufacturer"),
    _event("ProductStatusUpdated", "productId", "newStatus"),
    _event("TraceRecordAdded", "productId", "stage", "company"),
]
