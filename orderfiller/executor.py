"""On-chain fill execution for signed 1inch limit orders.

This module handles:
1. Fetching and rebuilding the order from the registry
2. Pre-flight checks (remaining amount, expiry, balance, allowance)
3. Token approval when the allowance is short
4. Fill transaction submission and receipt monitoring

Every invocation settles at most one order, re-deriving all facts from the
registry and the chain. Failures come back as a classified ``FillError`` on
the returned ``FillResult``.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from web3.exceptions import ContractLogicError, TimeExhausted

from .contracts import (
    DEFAULT_SETTLEMENT_ADDRESS,
    ContractMaker,
    EoaMaker,
    Erc20Token,
    MakerKind,
    SettlementContract,
    is_native_currency,
)
from .exceptions import (
    ApprovalFailed,
    ConfirmationTimeout,
    FillError,
    InsufficientBalance,
    MalformedOrderData,
    OrderAlreadySettled,
    OrderExpired,
    RegistryException,
    TransactionRejected,
    TransactionValidationFailed,
    UnclassifiedFailure,
)
from .order import LimitOrder, OrderHasher, OrderRecord, normalize_order_hash, parse_order_record
from .registry_client import OrderRegistryClient
from .retry import EXPONENTIAL, LINEAR, RetryPolicy
from .signature import recover_signer, signature_bytes, split_signature
from .signer import SignerContext
from .traits import THRESHOLD_MASK, UINT256_MAX, TakerTraits

DEFAULT_PRIORITY_FEE = 2 * 10**9  # 2 gwei
USER_REJECTED_CODE = 4001
RPC_VALIDATION_CODES = (-32603, -32602, -32000, -32003)


class FillStatus(Enum):
    """Fill execution status"""
    RECEIVED = "received"
    VALIDATING = "validating"
    APPROVING = "approving"
    EXECUTING = "executing"
    FILLED = "filled"
    FAILED = "failed"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass
class FillOptions:
    max_retries: int = 3
    confirmation_timeout: float = 300.0
    base_delay: float = 3.0
    approval_base_delay: float = 1.0
    approval_settle_delay: float = 2.0
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    fallback_gas_limit: int = 300000
    gas_buffer: float = 1.2
    fill_amount: Optional[int] = None
    threshold: int = 0
    approve_max: bool = False
    verify_order: bool = True

    def validate(self) -> None:
        if int(self.max_retries) < 1:
            raise ValueError("max_retries must be at least 1")
        if float(self.confirmation_timeout) <= 0:
            raise ValueError("confirmation_timeout must be positive")
        if self.fill_amount is not None and int(self.fill_amount) <= 0:
            raise ValueError("fill_amount must be positive")
        if not 0 <= int(self.threshold) <= THRESHOLD_MASK:
            raise ValueError("threshold must be a non-negative integer below 2**185")
        if int(self.fallback_gas_limit) <= 0:
            raise ValueError("fallback_gas_limit must be positive")
        if self.gas_price is not None and self.max_fee_per_gas is not None:
            raise ValueError("gas_price and max_fee_per_gas are mutually exclusive")

    def fee_params(self) -> Dict[str, int]:
        if self.gas_price is not None:
            return {"gasPrice": int(self.gas_price)}
        if self.max_fee_per_gas is not None:
            max_fee = int(self.max_fee_per_gas)
            priority = self.max_priority_fee_per_gas
            if priority is None:
                priority = min(DEFAULT_PRIORITY_FEE, max_fee)
            return {"maxFeePerGas": max_fee, "maxPriorityFeePerGas": int(priority)}
        return {}


@dataclass
class RequirementCheck:
    """Caller balance/allowance snapshot for the taker asset."""
    token: str
    balance: int
    allowance: Optional[int]
    required: int
    symbol: str = "UNKNOWN"
    decimals: int = 18
    is_native: bool = False

    @property
    def has_balance(self) -> bool:
        return self.balance >= self.required

    @property
    def has_allowance(self) -> bool:
        if self.is_native:
            return True
        return self.allowance is not None and self.allowance >= self.required

    def format_amount(self, amount: int) -> str:
        value = Decimal(amount) / (Decimal(10) ** self.decimals)
        text = format(value.normalize(), "f")
        return text


@dataclass
class FillAttempt:
    number: int
    started_at: int = field(default_factory=lambda: int(time.time()))
    fill_amount: Optional[int] = None
    taker_traits: Optional[int] = None
    maker_kind: Optional[str] = None
    entry_point: Optional[str] = None
    signature_parts: Optional[Dict[str, str]] = None
    approval_tx_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    outcome: Optional[AttemptOutcome] = None
    error: Optional[FillError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.number,
            "fillAmount": str(self.fill_amount) if self.fill_amount is not None else None,
            "takerTraits": hex(self.taker_traits) if self.taker_traits is not None else None,
            "makerKind": self.maker_kind,
            "entryPoint": self.entry_point,
            "approvalTxHash": self.approval_tx_hash,
            "txHash": self.tx_hash,
            "outcome": self.outcome.value if self.outcome else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class FillResult:
    order_hash: str
    status: FillStatus
    created_at: int
    updated_at: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    approval_tx_hash: Optional[str] = None
    entry_point: Optional[str] = None
    remaining_making_amount: Optional[int] = None
    filled_making_amount: Optional[int] = None
    filled_taking_amount: Optional[int] = None
    attempts: List[FillAttempt] = field(default_factory=list)
    error: Optional[FillError] = None

    @property
    def success(self) -> bool:
        return self.status == FillStatus.FILLED

    def raise_for_error(self) -> "FillResult":
        if self.error is not None:
            raise self.error
        return self

    def touch(self, status: Optional[FillStatus] = None) -> None:
        if status is not None:
            self.status = status
        self.updated_at = int(time.time())

    def to_response(self) -> Dict[str, Any]:
        """Convert to the JSON shape printed by the CLI."""
        response: Dict[str, Any] = {
            "orderHash": self.order_hash,
            "status": self.status.value,
            "success": self.success,
            "order": {
                "createdAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.created_at)),
                "updatedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.updated_at)),
            },
            "attempts": [a.to_dict() for a in self.attempts],
        }

        if self.tx_hash:
            response["fillTransaction"] = {
                "txHash": self.tx_hash,
                "blockNumber": self.block_number,
                "gasUsed": self.gas_used,
                "entryPoint": self.entry_point,
            }
        if self.approval_tx_hash:
            response["approvalTxHash"] = self.approval_tx_hash
        if self.filled_making_amount is not None:
            response["filledMakingAmount"] = str(self.filled_making_amount)
        if self.filled_taking_amount is not None:
            response["filledTakingAmount"] = str(self.filled_taking_amount)
        if self.error is not None:
            response["error"] = self.error.to_dict()

        return response


@dataclass
class OrderStatusReport:
    order_hash: str
    fillable: bool
    remaining_making_amount: Optional[int] = None
    remaining_taking_amount: Optional[int] = None
    making_amount: Optional[int] = None
    taking_amount: Optional[int] = None
    expiration: Optional[int] = None
    expired: bool = False
    allow_partial_fills: Optional[bool] = None
    maker_is_contract: Optional[bool] = None
    error: Optional[FillError] = None

    def to_dict(self) -> Dict[str, Any]:
        def _str(value):
            return str(value) if value is not None else None

        return {
            "orderHash": self.order_hash,
            "fillable": self.fillable,
            "remainingMakingAmount": _str(self.remaining_making_amount),
            "remainingTakingAmount": _str(self.remaining_taking_amount),
            "makingAmount": _str(self.making_amount),
            "takingAmount": _str(self.taking_amount),
            "expiration": self.expiration,
            "expired": self.expired,
            "allowPartialFills": self.allow_partial_fills,
            "makerIsContract": self.maker_is_contract,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class _PendingFill:
    tx_hash: str
    order: LimitOrder
    fill_amount: int
    remaining_before: int


@dataclass
class _FillState:
    """What earlier attempts of one ``fill_order`` call left behind."""
    pending: Optional[_PendingFill] = None
    reverted: List[str] = field(default_factory=list)


def _rpc_error_details(error: BaseException):
    """Pull a JSON-RPC ``(code, message)`` out of a provider exception."""
    rpc_response = getattr(error, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        err = rpc_response["error"]
        return err.get("code"), str(err.get("message", ""))

    if error.args and isinstance(error.args[0], dict):
        err = error.args[0]
        return err.get("code"), str(err.get("message", ""))

    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code, str(getattr(error, "message", "") or error)

    return None, str(error)


def classify_chain_error(error: BaseException, tx_hash: Optional[str] = None) -> FillError:
    """Map a provider/contract exception onto the fill error taxonomy.

    Structured error codes are preferred; insufficient gas funds has no
    standard code, so that case falls back to the node message.
    """
    if isinstance(error, FillError):
        if tx_hash and not error.tx_hash:
            error.tx_hash = tx_hash
        return error

    if isinstance(error, TimeExhausted):
        return ConfirmationTimeout(f"Transaction confirmation timeout: {error}", tx_hash=tx_hash)

    if isinstance(error, ContractLogicError):
        return TransactionValidationFailed(f"Transaction validation failed: {error}", tx_hash=tx_hash)

    if isinstance(error, RegistryException):
        return UnclassifiedFailure(f"Order registry unavailable: {error}", tx_hash=tx_hash)

    code, message = _rpc_error_details(error)

    if code == USER_REJECTED_CODE:
        return TransactionRejected("Transaction was rejected by user", tx_hash=tx_hash, retryable=False)

    if "insufficient funds" in message.lower():
        return TransactionRejected(
            f"Insufficient funds for transaction: {message}", tx_hash=tx_hash, retryable=False
        )

    if code in RPC_VALIDATION_CODES:
        return TransactionValidationFailed(
            f"RPC Error: Transaction validation failed ({code}): {message}. "
            f"This might be due to insufficient balance, invalid order, or network issues.",
            tx_hash=tx_hash,
        )

    return UnclassifiedFailure(message or type(error).__name__, tx_hash=tx_hash)


class OrderFillExecutor:
    """
    Fills signed limit orders through the settlement contract.

    The executor holds no per-caller state: the signer is passed to every
    call and nothing is cached between invocations.
    """

    def __init__(
        self,
        registry: OrderRegistryClient,
        settlement_address: str = DEFAULT_SETTLEMENT_ADDRESS,
        chain_id: int = 1,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        native_symbol: str = "ETH",
    ):
        self.registry = registry
        self.settlement_address = settlement_address
        self.chain_id = int(chain_id)
        self.logger = logger or logging.getLogger(__name__)
        self.hasher = OrderHasher(verifying_contract=settlement_address, chain_id=self.chain_id)
        self.native_symbol = native_symbol
        self._sleep = sleep

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking chain call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _settlement(self, signer: SignerContext) -> SettlementContract:
        return SettlementContract(signer.web3, self.settlement_address, logger=self.logger)

    async def fill_order(
        self,
        signer: SignerContext,
        order_hash: str,
        signature: Optional[str] = None,
        options: Optional[FillOptions] = None,
    ) -> FillResult:
        """
        Fill one order on-chain.

        Args:
            signer: Caller's signing context (taker)
            order_hash: EIP-712 hash identifying the order in the registry
            signature: Maker signature; the registry's copy is used when omitted
            options: Retry, timeout, gas and amount overrides

        Returns:
            FillResult with status, transaction details and a classified error on failure
        """
        options = options or FillOptions()
        options.validate()

        now = int(time.time())
        result = FillResult(order_hash=order_hash, status=FillStatus.RECEIVED, created_at=now, updated_at=now)

        try:
            order_hash = normalize_order_hash(order_hash)
        except MalformedOrderData as e:
            result.error = e
            result.touch(FillStatus.FAILED)
            return result
        result.order_hash = order_hash

        state = _FillState()

        async def run_attempt(number: int) -> None:
            attempt = FillAttempt(number=number)
            result.attempts.append(attempt)
            self.logger.info(f"Order {order_hash}: fill attempt {number}/{options.max_retries}")
            try:
                await self._attempt(signer, order_hash, signature, options, result, attempt, state)
            except FillError:
                raise
            except Exception as e:
                raise classify_chain_error(e, tx_hash=attempt.tx_hash) from e
            attempt.outcome = AttemptOutcome.SUCCESS

        def on_failure(error: BaseException, number: int) -> None:
            attempt = result.attempts[-1]
            attempt.error = error if isinstance(error, FillError) else classify_chain_error(error)
            attempt.outcome = (
                AttemptOutcome.RETRYABLE_FAILURE if attempt.error.retryable else AttemptOutcome.FATAL_FAILURE
            )
            self.logger.error(f"Order {order_hash}: attempt {number} failed: {attempt.error}")

        policy = RetryPolicy(
            max_attempts=options.max_retries,
            base_delay=options.base_delay,
            backoff=LINEAR,
            sleep=self._sleep,
            logger=self.logger,
        )

        try:
            await policy.run(run_attempt, on_failure=on_failure)
        except FillError as e:
            result.error = e
            result.touch(FillStatus.FAILED)
            return result

        result.touch(FillStatus.FILLED)
        self.logger.info(
            f"Order {order_hash}: filled! tx={result.tx_hash} block={result.block_number} "
            f"making={result.filled_making_amount} taking={result.filled_taking_amount}"
        )
        return result

    async def _attempt(
        self,
        signer: SignerContext,
        order_hash: str,
        signature: Optional[str],
        options: FillOptions,
        result: FillResult,
        attempt: FillAttempt,
        state: _FillState,
    ) -> None:
        settlement = self._settlement(signer)

        # A fill broadcast by an earlier attempt may still land; never send a second one blindly
        if state.pending is not None:
            if await self._resume_pending(signer, settlement, order_hash, options, result, attempt, state):
                return

        result.touch(FillStatus.VALIDATING)

        # Step 1-2: fetch and rebuild the order
        record = await self._load_order(order_hash, options)
        order = record.order
        self.logger.info(
            f"Order {order_hash}: maker={order.maker} makerAsset={order.maker_asset} "
            f"takerAsset={order.taker_asset} making={order.making_amount} taking={order.taking_amount}"
        )

        sig = signature or record.signature
        if not sig:
            raise MalformedOrderData(f"No signature available for order {order_hash}")

        # Step 3: remaining amount and expiry
        remaining = await self._call(settlement.remaining_making_amount, order, order_hash)
        result.remaining_making_amount = remaining
        if remaining == 0:
            raise OrderAlreadySettled(f"Order {order_hash} is fully filled or cancelled")

        traits = order.traits
        if traits.is_expired():
            raise OrderExpired(f"Order {order_hash} has expired (expiration={traits.expiration})")

        fill_amount = self._fill_amount(order, remaining, options)
        attempt.fill_amount = fill_amount

        # Step 4: caller balance and allowance
        requirements = await self._call(self._check_requirements, signer, settlement, order.taker_asset, fill_amount)
        self.logger.info(
            f"Order {order_hash}: requirements balance={requirements.format_amount(requirements.balance)} "
            f"required={requirements.format_amount(requirements.required)} {requirements.symbol} "
            f"hasAllowance={requirements.has_allowance}"
        )
        if not requirements.has_balance:
            raise InsufficientBalance(
                f"Insufficient {requirements.symbol} balance. "
                f"Required: {requirements.format_amount(requirements.required)} ({requirements.required}), "
                f"Available: {requirements.format_amount(requirements.balance)} ({requirements.balance})"
            )

        # Step 5: approval
        if not requirements.has_allowance:
            result.touch(FillStatus.APPROVING)
            approval_tx = await self._approve(signer, settlement, order.taker_asset, fill_amount, options)
            attempt.approval_tx_hash = approval_tx
            result.approval_tx_hash = approval_tx

        # Step 6: maker kind selects the entry point
        maker_is_contract = await self._call(signer.is_contract, order.maker)
        maker_kind = self._maker_kind(order_hash, order, sig, maker_is_contract, options)
        if isinstance(maker_kind, ContractMaker) and requirements.is_native:
            raise TransactionValidationFailed(
                f"Order {order_hash}: contract-signed orders cannot be filled with native currency "
                f"(fillContractOrder is not payable)",
                retryable=False,
            )

        if order.traits.has_extension and not record.extension:
            raise MalformedOrderData(f"Order {order_hash} requires an extension but none was provided")
        try:
            taker_traits, args = TakerTraits(threshold=options.threshold, extension=record.extension).encode()
        except ValueError as e:
            raise MalformedOrderData(f"Order {order_hash}: cannot encode taker traits: {e}") from e

        fill_fn = settlement.fill_function(maker_kind, order, fill_amount, taker_traits, args)
        attempt.taker_traits = taker_traits
        attempt.entry_point = settlement.entry_point_name(maker_kind, args)
        attempt.maker_kind = "contract" if isinstance(maker_kind, ContractMaker) else "eoa"
        if isinstance(maker_kind, EoaMaker):
            attempt.signature_parts = {"r": "0x" + maker_kind.r.hex(), "vs": "0x" + maker_kind.vs.hex()}
        result.entry_point = attempt.entry_point

        # Step 7: gas
        result.touch(FillStatus.EXECUTING)
        tx_params: Dict[str, Any] = {"from": signer.address, **options.fee_params()}
        tx_params["value"] = fill_amount if requirements.is_native else 0

        try:
            estimated_gas = await self._call(fill_fn.estimate_gas, dict(tx_params))
            # Add 20% buffer
            gas_limit = int(estimated_gas * options.gas_buffer)
        except Exception as e:
            if state.reverted:
                # The simulation reproduces the earlier on-chain revert
                raise TransactionValidationFailed(
                    f"Fill would revert again (previous fill {state.reverted[-1]} reverted): {e}",
                    tx_hash=state.reverted[-1],
                    retryable=False,
                ) from e
            self.logger.warning(f"Order {order_hash}: gas estimation failed: {e}, using fallback")
            gas_limit = int(options.fallback_gas_limit)
        tx_params["gas"] = gas_limit

        # Step 8: submit
        try:
            tx = await self._call(fill_fn.build_transaction, tx_params)
            tx_hash = await self._call(signer.send_transaction, tx)
        except Exception as e:
            raise classify_chain_error(e) from e

        attempt.tx_hash = tx_hash
        result.tx_hash = tx_hash
        result.touch()
        self.logger.info(f"Order {order_hash}: {attempt.entry_point} transaction submitted: {tx_hash}")

        state.pending = _PendingFill(tx_hash=tx_hash, order=order, fill_amount=fill_amount, remaining_before=remaining)

        # Step 9-10: confirmation and settlement event
        receipt = await self._wait_for_pending(signer, order_hash, options, state)
        self._finalize(settlement, order_hash, order, fill_amount, remaining, receipt, result)

    async def _wait_for_pending(
        self,
        signer: SignerContext,
        order_hash: str,
        options: FillOptions,
        state: _FillState,
    ) -> Dict[str, Any]:
        """Wait for the pending fill; a revert clears it and is remembered."""
        tx_hash = state.pending.tx_hash
        try:
            receipt = await self._wait_for_fill(signer, tx_hash, options)
        except TransactionRejected:
            state.pending = None
            state.reverted.append(tx_hash)
            self.logger.warning(f"Order {order_hash}: fill {tx_hash} reverted, fillability is re-checked first")
            raise
        state.pending = None
        return receipt

    async def _resume_pending(
        self,
        signer: SignerContext,
        settlement: SettlementContract,
        order_hash: str,
        options: FillOptions,
        result: FillResult,
        attempt: FillAttempt,
        state: _FillState,
    ) -> bool:
        """Wait again for a fill broadcast earlier; True when it confirmed."""
        prior = state.pending
        attempt.tx_hash = prior.tx_hash
        attempt.fill_amount = prior.fill_amount
        attempt.entry_point = result.entry_point
        self.logger.info(f"Order {order_hash}: waiting again for pending fill {prior.tx_hash}")
        try:
            receipt = await self._wait_for_pending(signer, order_hash, options, state)
        except TransactionRejected:
            # Reverted: run a fresh attempt, which re-checks the order first
            attempt.tx_hash = None
            return False
        self._finalize(settlement, order_hash, prior.order, prior.fill_amount, prior.remaining_before, receipt, result)
        return True

    async def _load_order(self, order_hash: str, options: FillOptions) -> OrderRecord:
        try:
            payload = await self.registry.fetch_order(order_hash)
        except RegistryException as e:
            raise UnclassifiedFailure(f"Order registry unavailable: {e}") from e

        record = parse_order_record(payload, order_hash)

        if options.verify_order:
            computed = self.hasher.order_hash_hex(record.order)
            if computed != order_hash:
                raise MalformedOrderData(
                    f"Registry data does not match order hash {order_hash} (computed {computed})"
                )
        return record

    def _fill_amount(self, order: LimitOrder, remaining: int, options: FillOptions) -> int:
        """Taker-asset amount to fill, capped at what is left of the order."""
        remaining_taking = order.taking_for_making(remaining)
        if options.fill_amount is None:
            return remaining_taking

        amount = min(int(options.fill_amount), remaining_taking)
        if amount < remaining_taking and not order.traits.allow_partial_fills:
            raise TransactionValidationFailed(
                f"Order does not allow partial fills: requested {amount}, remaining {remaining_taking}",
                retryable=False,
            )
        return amount

    def _check_requirements(
        self,
        signer: SignerContext,
        settlement: SettlementContract,
        token_address: str,
        amount: int,
    ) -> RequirementCheck:
        if is_native_currency(token_address):
            return RequirementCheck(
                token=token_address,
                balance=signer.get_native_balance(),
                allowance=None,
                required=amount,
                symbol=self.native_symbol,
                decimals=18,
                is_native=True,
            )

        token = Erc20Token(signer.web3, token_address)
        return RequirementCheck(
            token=token.address,
            balance=token.balance_of(signer.address),
            allowance=token.allowance(signer.address, settlement.address),
            required=amount,
            symbol=token.symbol(),
            decimals=token.decimals(),
        )

    async def _approve(
        self,
        signer: SignerContext,
        settlement: SettlementContract,
        token_address: str,
        amount: int,
        options: FillOptions,
    ) -> str:
        token = Erc20Token(signer.web3, token_address)
        approve_amount = UINT256_MAX if options.approve_max else amount
        self.logger.info(f"Requesting {token.address} approval of {approve_amount} for {settlement.address}")

        async def submit(_: int) -> str:
            try:
                approve_fn = token.approve_function(settlement.address, approve_amount)
                tx = await self._call(approve_fn.build_transaction, {"from": signer.address, **options.fee_params()})
                return await self._call(signer.send_transaction, tx)
            except Exception as e:
                raise classify_chain_error(e) from e

        policy = RetryPolicy(
            max_attempts=options.max_retries,
            base_delay=options.approval_base_delay,
            backoff=EXPONENTIAL,
            sleep=self._sleep,
            logger=self.logger,
        )
        try:
            tx_hash = await policy.run(submit)
        except FillError as e:
            if not e.retryable:
                raise
            raise ApprovalFailed(f"Token approval failed: {e}") from e

        self.logger.info(f"Approval transaction sent: {tx_hash}")
        try:
            receipt = await self._call(signer.wait_for_receipt, tx_hash, options.confirmation_timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout(f"Approval confirmation timeout: {e}", tx_hash=tx_hash) from e
        except Exception as e:
            raise classify_chain_error(e, tx_hash=tx_hash) from e

        if receipt.get("status") != 1:
            raise ApprovalFailed("Approval transaction reverted", tx_hash=tx_hash)
        self.logger.info(f"Approval confirmed in block: {receipt.get('blockNumber')}")

        # Wait a bit for network propagation
        if options.approval_settle_delay > 0:
            await self._sleep(options.approval_settle_delay)
        return tx_hash

    def _maker_kind(
        self,
        order_hash: str,
        order: LimitOrder,
        signature: str,
        maker_is_contract: bool,
        options: FillOptions,
    ) -> MakerKind:
        if maker_is_contract:
            return ContractMaker(signature=signature_bytes(signature))

        r, vs = split_signature(signature)
        if options.verify_order:
            signer_address = recover_signer(self.hasher.order_hash(order), signature)
            if signer_address != order.maker:
                raise MalformedOrderData(
                    f"Signature for order {order_hash} recovers {signer_address}, expected maker {order.maker}"
                )
        return EoaMaker(r=r, vs=vs)

    async def _wait_for_fill(self, signer: SignerContext, tx_hash: str, options: FillOptions) -> Dict[str, Any]:
        try:
            receipt = await self._call(signer.wait_for_receipt, tx_hash, options.confirmation_timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout(f"Transaction confirmation timeout: {e}", tx_hash=tx_hash) from e
        except Exception as e:
            raise classify_chain_error(e, tx_hash=tx_hash) from e

        if receipt.get("status") != 1:
            raise TransactionRejected("Fill transaction reverted", tx_hash=tx_hash)
        return receipt

    def _finalize(
        self,
        settlement: SettlementContract,
        order_hash: str,
        order: LimitOrder,
        fill_amount: int,
        remaining_before: int,
        receipt: Dict[str, Any],
        result: FillResult,
    ) -> None:
        result.block_number = receipt.get("blockNumber")
        result.gas_used = receipt.get("gasUsed")
        result.remaining_making_amount = remaining_before
        result.filled_taking_amount = fill_amount
        result.filled_making_amount = order.making_for_taking(fill_amount)

        event = settlement.parse_order_filled(receipt, order_hash)
        if event is not None and event.remaining_amount <= remaining_before:
            result.filled_making_amount = remaining_before - event.remaining_amount
            self.logger.info(f"Order {order_hash}: actual filled amount {result.filled_making_amount}")
        elif event is None:
            self.logger.warning(f"Order {order_hash}: no OrderFilled event in receipt, reporting requested amount")

    async def check_order(self, signer: SignerContext, order_hash: str) -> OrderStatusReport:
        """Report whether an order is still fillable without sending anything."""
        report = OrderStatusReport(order_hash=order_hash, fillable=False)
        try:
            order_hash = normalize_order_hash(order_hash)
            report.order_hash = order_hash
            record = await self._load_order(order_hash, FillOptions())
            order = record.order
            settlement = self._settlement(signer)

            remaining = await self._call(settlement.remaining_making_amount, order, order_hash)
            traits = order.traits

            report.making_amount = order.making_amount
            report.taking_amount = order.taking_amount
            report.remaining_making_amount = remaining
            report.remaining_taking_amount = order.taking_for_making(remaining)
            report.expiration = traits.expiration or None
            report.expired = traits.is_expired()
            report.allow_partial_fills = traits.allow_partial_fills
            report.maker_is_contract = await self._call(signer.is_contract, order.maker)
            report.fillable = remaining > 0 and not report.expired
        except FillError as e:
            report.error = e
        except Exception as e:
            report.error = classify_chain_error(e)
        return report
