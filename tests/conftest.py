"""Shared fixtures: an in-memory chain behind a web3-shaped facade."""
import itertools
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import keccak, to_bytes, to_checksum_address

from orderfiller.contracts import DEFAULT_SETTLEMENT_ADDRESS, ORDER_FILLED_TOPIC
from orderfiller.exceptions import OrderNotFound
from orderfiller.order import LimitOrder, OrderHasher
from orderfiller.signer import SignerContext
from orderfiller.traits import ALLOW_MULTIPLE_FILLS_FLAG, UINT256_MAX, MakerTraits

MAKER_KEY = "0x" + "11" * 32
TAKER_ADDRESS = "0x1111111111111111111111111111111111111111"
MAKER_ASSET = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"  # WETH
TAKER_ASSET = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"  # USDC
GAS_ESTIMATE = 150000
# Orders with this flag track their remaining amount instead of a nonce bit
MULTIPLE_FILLS = 1 << ALLOW_MULTIPLE_FILLS_FLAG


def _addr_from_int(value: int) -> str:
    return to_checksum_address("0x" + value.to_bytes(20, "big").hex())


class FakeChain:
    """Token balances, allowances, order invalidators and scripted failures."""

    def __init__(self, settlement: str = DEFAULT_SETTLEMENT_ADDRESS, chain_id: int = 1):
        self.settlement = to_checksum_address(settlement)
        self.chain_id = chain_id
        self.code: Dict[str, bytes] = {}
        self.native_balances: Dict[str, int] = {}
        self.balances: Dict[tuple, int] = {}
        self.allowances: Dict[tuple, int] = {}
        self.invalidators: Dict[tuple, int] = {}
        self.bit_invalidators: Dict[tuple, int] = {}
        self.symbols: Dict[str, str] = {}
        self.decimals: Dict[str, int] = {}
        self.order_hashes: Dict[int, str] = {}

        self.sent: List[Dict[str, Any]] = []
        self.events: List[tuple] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.send_errors: List[Exception] = []
        self.receipt_script: List[Any] = []
        self.estimate_error: Optional[Exception] = None
        self.revert_fills = False
        self.emit_fill_events = True
        self._counter = itertools.count(1)

    # helpers used by tests
    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self.balances[(token.lower(), owner.lower())] = amount

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        self.allowances[(token.lower(), owner.lower(), spender.lower())] = amount

    def set_code(self, address: str, code: bytes) -> None:
        self.code[address.lower()] = code

    def register_order(self, order: LimitOrder, order_hash: str) -> None:
        self.order_hashes[order.salt] = order_hash.lower()

    def set_remaining(self, maker: str, order_hash: str, remaining: int) -> None:
        self.invalidators[(maker.lower(), order_hash.lower())] = UINT256_MAX ^ remaining

    def invalidate_nonce(self, maker: str, nonce: int) -> None:
        key = (maker.lower(), nonce >> 8)
        self.bit_invalidators[key] = self.bit_invalidators.get(key, 0) | (1 << (nonce & 0xFF))

    def sent_functions(self) -> List[str]:
        return [tx["data"]["fn"] for tx in self.sent]

    # contract views
    def call(self, token: str, fn: str, args: tuple) -> Any:
        self.events.append(("call", fn))
        token = token.lower()
        if fn == "balanceOf":
            return self.balances.get((token, args[0].lower()), 0)
        if fn == "allowance":
            return self.allowances.get((token, args[0].lower(), args[1].lower()), 0)
        if fn == "symbol":
            return self.symbols.get(token, "TKN")
        if fn == "decimals":
            return self.decimals.get(token, 18)
        if fn == "rawRemainingInvalidatorForOrder":
            return self.invalidators.get((args[0].lower(), "0x" + bytes(args[1]).hex()), 0)
        if fn == "bitInvalidatorForOrder":
            return self.bit_invalidators.get((args[0].lower(), args[1]), 0)
        raise AssertionError(f"unexpected call {fn}")

    def estimate_gas(self, fn: str, tx: Dict[str, Any]) -> int:
        self.events.append(("estimate", fn))
        if self.estimate_error is not None:
            raise self.estimate_error
        return GAS_ESTIMATE

    # transactions
    def send(self, tx: Dict[str, Any]) -> bytes:
        self.events.append(("send", tx["data"]["fn"]))
        if self.send_errors:
            raise self.send_errors.pop(0)
        tx_hash = keccak(text=f"tx-{next(self._counter)}")
        self.sent.append(tx)
        receipt = {
            "transactionHash": tx_hash,
            "blockNumber": 1000 + len(self.sent),
            "gasUsed": 120000,
            "status": 1,
            "logs": [],
        }
        fn = tx["data"]["fn"]
        if fn == "approve":
            spender, amount = tx["data"]["args"]
            self.set_allowance(tx["to"], tx["from"], spender, amount)
        elif fn.startswith("fill"):
            logs = None if self.revert_fills else self._apply_fill(fn, tx["data"]["args"])
            if logs is None:
                receipt["status"] = 0
            else:
                receipt["logs"] = logs
        self.receipts["0x" + tx_hash.hex()] = receipt
        return tx_hash

    def _apply_fill(self, fn: str, args: tuple) -> Optional[List[Dict[str, Any]]]:
        """Settle a fill like the router does; None when the router would revert."""
        order = args[0]
        salt, maker_int, making, taking = order[0], order[1], order[5], order[6]
        traits = MakerTraits.from_int(order[7])
        amount = args[3] if fn.startswith("fillOrder") else args[2]
        maker = _addr_from_int(maker_int)
        order_hash = self.order_hashes[salt]
        filled = amount * making // taking

        if traits.use_bit_invalidator:
            slot, mask = traits.invalidator_slot()
            if self.bit_invalidators.get((maker.lower(), slot), 0) & mask:
                return None
            self.invalidate_nonce(maker, traits.nonce_or_epoch)
            new_remaining = making - filled
        else:
            raw = self.invalidators.get((maker.lower(), order_hash), 0)
            remaining = making if raw == 0 else UINT256_MAX ^ raw
            if filled > remaining or remaining == 0:
                return None
            new_remaining = remaining - filled
            self.invalidators[(maker.lower(), order_hash)] = UINT256_MAX ^ new_remaining

        if not self.emit_fill_events:
            return []
        return [{
            "address": self.settlement,
            "topics": [ORDER_FILLED_TOPIC],
            "data": abi_encode(["bytes32", "uint256"], [to_bytes(hexstr=order_hash), new_remaining]),
        }]

    def wait(self, tx_hash: Any) -> Dict[str, Any]:
        key = tx_hash if isinstance(tx_hash, str) else "0x" + bytes(tx_hash).hex()
        self.events.append(("wait", key))
        if self.receipt_script:
            scripted = self.receipt_script.pop(0)
            if isinstance(scripted, Exception):
                raise scripted
        return self.receipts[key]


class FakeFunction:
    def __init__(self, chain: FakeChain, address: str, name: str, args: tuple):
        self.chain = chain
        self.address = address
        self.fn_name = name
        self.args = args

    def call(self):
        return self.chain.call(self.address, self.fn_name, self.args)

    def estimate_gas(self, tx: Optional[Dict[str, Any]] = None):
        return self.chain.estimate_gas(self.fn_name, dict(tx or {}))

    def build_transaction(self, tx: Optional[Dict[str, Any]] = None):
        built = dict(tx or {})
        built["to"] = self.address
        built["data"] = {"fn": self.fn_name, "args": self.args}
        return built


class FakeFunctions:
    def __init__(self, chain: FakeChain, address: str):
        self._chain = chain
        self._address = address

    def __getattr__(self, name):
        def bind(*args):
            return FakeFunction(self._chain, self._address, name, args)
        return bind


class FakeContract:
    def __init__(self, chain: FakeChain, address: str, abi: list):
        self.address = address
        self.abi = abi
        self.functions = FakeFunctions(chain, address)


class FakeEth:
    def __init__(self, chain: FakeChain):
        self._chain = chain

    @property
    def chain_id(self) -> int:
        return self._chain.chain_id

    def contract(self, address=None, abi=None):
        return FakeContract(self._chain, address, abi)

    def get_code(self, address):
        return self._chain.code.get(address.lower(), b"")

    def get_balance(self, address):
        return self._chain.native_balances.get(address.lower(), 0)

    def get_transaction_count(self, address, block_identifier="latest"):
        return len(self._chain.sent)

    def send_transaction(self, tx):
        return self._chain.send(tx)

    def send_raw_transaction(self, raw):
        raise AssertionError("fake chain only accepts unsigned transactions")

    def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        return self._chain.wait(tx_hash)


class FakeWeb3:
    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.eth = FakeEth(chain)


class StubRegistry:
    """Order registry returning canned payloads keyed by order hash."""

    def __init__(self, payloads: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.payloads = {k.lower(): v for k, v in (payloads or {}).items()}
        self.error = error
        self.calls: List[str] = []

    async def fetch_order(self, order_hash: str):
        self.calls.append(order_hash)
        if self.error is not None:
            raise self.error
        if order_hash.lower() not in self.payloads:
            raise OrderNotFound(f"Order {order_hash} not found in registry")
        return self.payloads[order_hash.lower()]


async def no_sleep(delay: float) -> None:
    no_sleep.delays.append(delay)


no_sleep.delays = []


def make_order(maker: str, making: int = 10**18, taking: int = 3000 * 10**6, traits: int = 0,
               salt: int = 42, receiver: Optional[str] = None, taker_asset: str = TAKER_ASSET) -> LimitOrder:
    return LimitOrder(
        salt=salt,
        maker=to_checksum_address(maker),
        receiver=to_checksum_address(receiver) if receiver else "0x0000000000000000000000000000000000000000",
        maker_asset=MAKER_ASSET,
        taker_asset=to_checksum_address(taker_asset),
        making_amount=making,
        taking_amount=taking,
        maker_traits=traits,
    )


def order_payload(order: LimitOrder, order_hash: str, signature: str, extension: str = "0x") -> Dict[str, Any]:
    return {
        "orderHash": order_hash,
        "signature": signature,
        "data": {
            "salt": str(order.salt),
            "maker": order.maker,
            "receiver": order.receiver,
            "makerAsset": order.maker_asset,
            "takerAsset": order.taker_asset,
            "makingAmount": str(order.making_amount),
            "takingAmount": str(order.taking_amount),
            "makerTraits": hex(order.maker_traits),
            "extension": extension,
        },
    }


@pytest.fixture
def maker_account():
    return Account.from_key(MAKER_KEY)


@pytest.fixture
def hasher():
    return OrderHasher(verifying_contract=DEFAULT_SETTLEMENT_ADDRESS, chain_id=1)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def taker(chain):
    return SignerContext(FakeWeb3(chain), address=TAKER_ADDRESS)


@pytest.fixture
def sleeps():
    no_sleep.delays = []
    return no_sleep


@pytest.fixture
def signed_order(maker_account, hasher, chain):
    """Build, sign and register an EOA order; returns (order, hash, signature, payload)."""

    def build(**kwargs):
        order = make_order(maker_account.address, **kwargs)
        digest = hasher.order_hash(order)
        order_hash = "0x" + digest.hex()
        signature = "0x" + bytes(maker_account.unsafe_sign_hash(digest).signature).hex()
        chain.register_order(order, order_hash)
        return order, order_hash, signature, order_payload(order, order_hash, signature)

    return build
