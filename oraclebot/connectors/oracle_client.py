"""Holographic Oracle client: JSON-RPC ``eth_call`` against the contract.

The oracle is a deterministic, read-only black box:
- computeDelta(eta, lambda) → Δ (scaled ×1000)
- efficiency(Δ) → fraction of 1 (scaled ×1e9)
- isOptimal(Δ) → bool

Inputs are fixed-point ×1e9. The contract is partial: it reverts for some
inputs (magnitudes ≥ 1e18, some internal divide-by-zero points), so every
call may fail. A failed cycle is logged and discarded; the next scheduled
cycle is the retry.
"""

from __future__ import annotations

import math
import re
import ssl
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp
import certifi
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from web3 import Web3

from oraclebot.core.errors import ExternalComputationError
from oraclebot.utils.logger import get_logger

if TYPE_CHECKING:
    from oraclebot.core.estimator import Parameters

logger = get_logger("oracle_client")

FIXED_POINT_SCALE = 10**9
DELTA_SCALE = 1000
EFFICIENCY_SCALE = 10**9
MAX_INPUT_MAGNITUDE = 10**18  # contract rejects at or beyond this

# Critical damping health-check fixture: η = λ = 1/√2
CRITICAL_DAMPING_FIXED = 707_106_781
CRITICAL_DELTA_EXPECTED = 230
CRITICAL_DELTA_TOLERANCE = 5

_SIGNATURE_RE = re.compile(r"^(\w+)\(([\w,\s]*)\)$")


def to_fixed(value: float) -> int:
    """Scale to the oracle's fixed-point domain, truncating toward zero."""
    return math.trunc(value * FIXED_POINT_SCALE)


@dataclass(frozen=True)
class ComputationResult:
    """One cycle's oracle output. Never cached or reused."""

    delta: int
    efficiency_raw: int
    efficiency_percent: float
    is_optimal: bool
    eta: float = 0.0
    lambda_: float = 0.0

    @property
    def delta_decimal(self) -> float:
        return self.delta / DELTA_SCALE


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of the critical damping fixture."""

    passed: bool
    delta: int | None = None
    efficiency_percent: float | None = None
    is_optimal: bool | None = None
    error: str | None = None


@dataclass(frozen=True)
class ContractFunction:
    """ABI view of one oracle function: name, selector, argument types."""

    name: str
    selector: str
    arg_types: tuple[str, ...]

    @classmethod
    def from_signature(cls, signature: str) -> ContractFunction:
        """Build from a canonical signature like ``computeDelta(int64,int64)``."""
        compact = signature.replace(" ", "")
        match = _SIGNATURE_RE.match(compact)
        if not match:
            raise ValueError(f"Invalid function signature: {signature!r}")
        name, args = match.groups()
        arg_types = tuple(a for a in args.split(",") if a)
        selector = "0x" + bytes(Web3.keccak(text=compact)[:4]).hex()
        return cls(name=name, selector=selector, arg_types=arg_types)

    def encode_call(self, *args: int) -> str:
        """Selector + ABI-encoded arguments as 0x-prefixed calldata."""
        if len(args) != len(self.arg_types):
            raise ExternalComputationError(
                f"{self.name}: expected {len(self.arg_types)} args, got {len(args)}"
            )
        for arg in args:
            if abs(arg) >= MAX_INPUT_MAGNITUDE:
                raise ExternalComputationError(
                    f"{self.name}: input {arg} outside oracle domain (|x| < 1e18)"
                )
        try:
            return self.selector + encode(list(self.arg_types), list(args)).hex()
        except (EncodingError, OverflowError, TypeError) as e:
            raise ExternalComputationError(f"{self.name}: cannot encode {args}: {e}") from e


class OracleClient:
    """Async JSON-RPC client for the oracle contract.

    Lifecycle: ``initialize()`` → calls → ``close()``. Only read-only
    ``eth_call``/``eth_getCode`` are issued, so no keys are involved.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        compute_delta_signature: str = "computeDelta(int64,int64)",
        efficiency_signature: str = "efficiency(int64)",
        is_optimal_signature: str = "isOptimal(int64)",
        timeout_s: float = 30.0,
    ) -> None:
        self._rpc_url = rpc_url
        self._address = contract_address
        self._timeout_s = timeout_s
        self._compute_delta = ContractFunction.from_signature(compute_delta_signature)
        self._efficiency = ContractFunction.from_signature(efficiency_signature)
        self._is_optimal = ContractFunction.from_signature(is_optimal_signature)
        # Δ and efficiency come back in the same integer width as Δ goes in
        self._int_type = self._efficiency.arg_types[0] if self._efficiency.arg_types else "int256"
        self._session: aiohttp.ClientSession | None = None
        self._request_id = 0
        self._calls = 0
        self._failures = 0

    @property
    def stats(self) -> dict[str, int]:
        return {"calls": self._calls, "failures": self._failures}

    async def initialize(self) -> None:
        """Create aiohttp session with certifi SSL context."""
        ssl_ctx = ssl.create_default_context(cafile=certifi.where())
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout_s),
            headers={"Content-Type": "application/json"},
            connector=aiohttp.TCPConnector(ssl=ssl_ctx),
        )
        logger.info("oracle_client_initialized", rpc_url=self._rpc_url, contract=self._address)

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Raw JSON-RPC
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC request and return its ``result``.

        Raises:
            ExternalComputationError: Transport failure, HTTP error, or a
                JSON-RPC error object (revert).
        """
        if self._session is None:
            raise RuntimeError("OracleClient not initialized. Call initialize() first.")

        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            async with self._session.post(self._rpc_url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ExternalComputationError(f"RPC HTTP {resp.status}: {body[:200]}")
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    body = await resp.text()
                    raise ExternalComputationError(f"RPC non-JSON response: {body[:200]}") from e
        except aiohttp.ClientError as e:
            raise ExternalComputationError(f"RPC transport error: {e}") from e
        except TimeoutError as e:
            raise ExternalComputationError("RPC request timed out") from e

        if not isinstance(data, dict):
            raise ExternalComputationError(f"RPC malformed response: {str(data)[:200]}")
        if data.get("error"):
            err = data["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise ExternalComputationError(f"RPC error ({method}): {message}")
        return data.get("result")

    async def _eth_call(self, fn: ContractFunction, *args: int) -> bytes:
        calldata = fn.encode_call(*args)
        self._calls += 1
        result = await self._rpc("eth_call", [{"to": self._address, "data": calldata}, "latest"])
        if not isinstance(result, str) or not result.startswith("0x") or len(result) <= 2:
            raise ExternalComputationError(f"{fn.name}: empty or malformed return data {result!r}")
        try:
            return bytes.fromhex(result[2:])
        except ValueError as e:
            raise ExternalComputationError(f"{fn.name}: return data is not hex") from e

    def _decode(self, fn: ContractFunction, abi_type: str, data: bytes) -> Any:
        try:
            (value,) = decode([abi_type], data)
        except (DecodingError, ValueError) as e:
            raise ExternalComputationError(f"{fn.name}: cannot decode {abi_type}: {e}") from e
        return value

    # ------------------------------------------------------------------
    # Contract calls
    # ------------------------------------------------------------------

    async def compute_delta(self, eta_fixed: int, lambda_fixed: int) -> int:
        data = await self._eth_call(self._compute_delta, eta_fixed, lambda_fixed)
        return int(self._decode(self._compute_delta, self._int_type, data))

    async def efficiency(self, delta_fixed: int) -> int:
        data = await self._eth_call(self._efficiency, delta_fixed)
        return int(self._decode(self._efficiency, self._int_type, data))

    async def is_optimal(self, delta_fixed: int) -> bool:
        data = await self._eth_call(self._is_optimal, delta_fixed)
        return bool(self._decode(self._is_optimal, "bool", data))

    async def evaluate_fixed(
        self,
        eta_fixed: int,
        lambda_fixed: int,
        eta: float | None = None,
        lambda_: float | None = None,
    ) -> ComputationResult:
        """Run the three calls in order; efficiency and optimality use call 1's Δ.

        Raises:
            ExternalComputationError: Any of the three calls failed.
        """
        delta = await self.compute_delta(eta_fixed, lambda_fixed)
        efficiency_raw = await self.efficiency(delta)
        optimal = await self.is_optimal(delta)
        return ComputationResult(
            delta=delta,
            efficiency_raw=efficiency_raw,
            efficiency_percent=efficiency_raw / EFFICIENCY_SCALE * 100,
            is_optimal=optimal,
            eta=eta if eta is not None else eta_fixed / FIXED_POINT_SCALE,
            lambda_=lambda_ if lambda_ is not None else lambda_fixed / FIXED_POINT_SCALE,
        )

    async def evaluate(self, params: Parameters) -> ComputationResult | None:
        """Evaluate one cycle's parameters. Returns None when the cycle must be discarded."""
        eta_fixed = to_fixed(params.eta)
        lambda_fixed = to_fixed(params.lambda_)
        try:
            return await self.evaluate_fixed(eta_fixed, lambda_fixed, params.eta, params.lambda_)
        except ExternalComputationError as e:
            self._failures += 1
            logger.error(
                "oracle_call_failed",
                error=str(e),
                eta_fixed=eta_fixed,
                lambda_fixed=lambda_fixed,
            )
            return None

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def verify_contract(self) -> bool:
        """True if bytecode is deployed at the configured address."""
        try:
            code = await self._rpc("eth_getCode", [self._address, "latest"])
        except ExternalComputationError as e:
            logger.warning("oracle_verify_failed", error=str(e))
            return False
        deployed = isinstance(code, str) and code not in ("0x", "0x0", "")
        if not deployed:
            logger.error("oracle_contract_not_found", contract=self._address)
        return deployed

    async def health_check(self) -> HealthCheckResult:
        """Run the critical damping fixture: expects Δ ≈ 230 (±5) and optimal."""
        try:
            result = await self.evaluate_fixed(CRITICAL_DAMPING_FIXED, CRITICAL_DAMPING_FIXED)
        except ExternalComputationError as e:
            logger.warning("oracle_health_check_error", error=str(e))
            return HealthCheckResult(passed=False, error=str(e))

        delta_ok = abs(result.delta - CRITICAL_DELTA_EXPECTED) <= CRITICAL_DELTA_TOLERANCE
        passed = delta_ok and result.is_optimal
        logger.info(
            "oracle_health_check",
            passed=passed,
            delta=result.delta,
            efficiency_pct=round(result.efficiency_percent, 2),
            is_optimal=result.is_optimal,
        )
        return HealthCheckResult(
            passed=passed,
            delta=result.delta,
            efficiency_percent=result.efficiency_percent,
            is_optimal=result.is_optimal,
        )
