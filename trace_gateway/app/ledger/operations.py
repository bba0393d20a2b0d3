"""
ledger/operations.py - The contract calls this service makes, as data.

Each write operation carries its parameter names (all on-chain strings)
and the gas limit used when estimation fails. Call sites never hardcode
gas numbers; they pick an operation from this table.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class ContractOperation:
    key: str
    function_name: str
    params: tuple
    default_gas: int


REGISTER_PRODUCT = ContractOperation(
    key="register",
    function_name="registerProduct",
    params=("productId", "name", "batch", "manufacturer"),
    default_gas=300_000,
)

UPDATE_STATUS = ContractOperation(
    key="update_status",
    function_name="updateProductStatus",
    params=("productId", "newStatus"),
    default_gas=200_000,
)

ADD_TRACE = ContractOperation(
    key="trace_append",
    function_name="addTraceRecord",
    params=("productId", "stage", "company", "location"),
    default_gas=250_000,
)

OPERATIONS: dict[str, ContractOperation] = {
    op.key: op for op in (REGISTER_PRODUCT, UPDATE_STATUS, ADD_TRACE)
}

DEFAULT_GAS_LIMITS: dict[str, int] = {
    op.function_name: op.default_gas for op in OPERATIONS.values()
}


def get_operation(key_or_name: str) -> ContractOperation:
    """Look up by table key ("register") or contract function name."""
    if key_or_name in OPERATIONS:
        return OPERATIONS[key_or_name]
    for op in OPERATIONS.values():
        if op.function_name == key_or_name:
            return op
    raise KeyError(f"unknown contract operation: {key_or_name}")
