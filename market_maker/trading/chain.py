from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Protocol, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3

from market_maker.common import guarded_call, log_event

from .abi import ERC20_ABI, QUOTER_V1_ABI, QUOTER_V2_ABI, V2_ROUTER_ABI, V3_SWAP_ROUTER_ABI
from .errors import SwapNotConfirmedError, SwapSubmissionFailedError
from .types import TxReceipt, normalize_address


class ChainClient(Protocol):
    @property
    def account_address(self) -> str:
        ...

    async def healthcheck(self) -> None:
        ...

    async def quote_v3_exact_input_single(
        self,
        *,
        quoter: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> tuple[int, int | None]:
        ...

    async def quote_v3_legacy_exact_input_single(
        self,
        *,
        quoter: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> int:
        ...

    async def quote_v2_amounts_out(self, *, router: str, amount_in: int, path: Sequence[str]) -> list[int]:
        ...

    async def get_allowance(self, *, token: str, owner: str, spender: str) -> int:
        ...

    async def approve(self, *, token: str, spender: str, amount: int) -> str:
        ...

    async def swap_v3_exact_input_single(
        self,
        *,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        recipient: str,
        deadline: int,
        amount_in: int,
        amount_out_minimum: int,
        gas_limit: int,
    ) -> str:
        ...

    async def swap_v2_exact_tokens_for_tokens(
        self,
        *,
        router: str,
        amount_in: int,
        amount_out_min: int,
        path: Sequence[str],
        recipient: str,
        deadline: int,
        gas_limit: int,
    ) -> str:
        ...

    async def wait_for_receipt(self, tx_hash: str, *, timeout_seconds: float) -> TxReceipt:
        ...

    async def close(self) -> None:
        ...


def is_valid_tx_hash(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != 66 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


class Web3ChainClient:
    """HyperEVM access through web3's async HTTP provider.

    Without a private key the client is read-only: quotes and allowances
    work for ``account_address`` but every write raises.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        private_key: str | None = None,
        account_address: str | None = None,
        chain_id: int | None = None,
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_seconds}))
        key = (private_key or "").strip()
        self._account = self._w3.eth.account.from_key(key) if key else None
        if self._account is not None:
            self._address = self._account.address
        elif account_address:
            self._address = AsyncWeb3.to_checksum_address(account_address)
        else:
            raise ValueError("Either PRIVATE_KEY or ACCOUNT_ADDRESS is required for the chain client.")
        self._chain_id = chain_id
        # One signer, one nonce sequence: submissions are serialized.
        self._send_lock = asyncio.Lock()

    @property
    def account_address(self) -> str:
        return self._address

    def _contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self._w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    @staticmethod
    def _checksum_path(path: Sequence[str]) -> list[str]:
        return [AsyncWeb3.to_checksum_address(token) for token in path]

    async def healthcheck(self) -> None:
        if not await self._w3.is_connected():
            raise RuntimeError(f"Chain RPC is not reachable: {self._rpc_url}")
        if self._chain_id is None:
            self._chain_id = int(await self._w3.eth.chain_id)

    async def quote_v3_exact_input_single(
        self,
        *,
        quoter: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> tuple[int, int | None]:
        contract = self._contract(quoter, QUOTER_V2_ABI)
        params = (
            AsyncWeb3.to_checksum_address(token_in),
            AsyncWeb3.to_checksum_address(token_out),
            int(amount_in),
            int(fee),
            0,
        )
        result = await contract.functions.quoteExactInputSingle(params).call()
        amount_out = int(result[0])
        gas_estimate = int(result[3]) if len(result) > 3 and result[3] is not None else None
        return amount_out, gas_estimate

    async def quote_v3_legacy_exact_input_single(
        self,
        *,
        quoter: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> int:
        contract = self._contract(quoter, QUOTER_V1_ABI)
        result = await contract.functions.quoteExactInputSingle(
            AsyncWeb3.to_checksum_address(token_in),
            AsyncWeb3.to_checksum_address(token_out),
            int(fee),
            int(amount_in),
            0,
        ).call()
        return int(result)

    async def quote_v2_amounts_out(self, *, router: str, amount_in: int, path: Sequence[str]) -> list[int]:
        contract = self._contract(router, V2_ROUTER_ABI)
        amounts = await contract.functions.getAmountsOut(int(amount_in), self._checksum_path(path)).call()
        return [int(amount) for amount in amounts]

    async def get_allowance(self, *, token: str, owner: str, spender: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        allowance = await contract.functions.allowance(
            AsyncWeb3.to_checksum_address(owner),
            AsyncWeb3.to_checksum_address(spender),
        ).call()
        return int(allowance)

    async def approve(self, *, token: str, spender: str, amount: int) -> str:
        contract = self._contract(token, ERC20_ABI)
        call = contract.functions.approve(AsyncWeb3.to_checksum_address(spender), int(amount))
        return await self._sign_and_send(call, gas_limit=None, label="approve")

    async def swap_v3_exact_input_single(
        self,
        *,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        recipient: str,
        deadline: int,
        amount_in: int,
        amount_out_minimum: int,
        gas_limit: int,
    ) -> str:
        contract = self._contract(router, V3_SWAP_ROUTER_ABI)
        params = (
            AsyncWeb3.to_checksum_address(token_in),
            AsyncWeb3.to_checksum_address(token_out),
            int(fee),
            AsyncWeb3.to_checksum_address(recipient),
            int(deadline),
            int(amount_in),
            int(amount_out_minimum),
            0,
        )
        call = contract.functions.exactInputSingle(params)
        return await self._sign_and_send(call, gas_limit=gas_limit, label="exact_input_single")

    async def swap_v2_exact_tokens_for_tokens(
        self,
        *,
        router: str,
        amount_in: int,
        amount_out_min: int,
        path: Sequence[str],
        recipient: str,
        deadline: int,
        gas_limit: int,
    ) -> str:
        contract = self._contract(router, V2_ROUTER_ABI)
        call = contract.functions.swapExactTokensForTokens(
            int(amount_in),
            int(amount_out_min),
            self._checksum_path(path),
            AsyncWeb3.to_checksum_address(recipient),
            int(deadline),
        )
        return await self._sign_and_send(call, gas_limit=gas_limit, label="swap_exact_tokens_for_tokens")

    async def _sign_and_send(self, call: Any, *, gas_limit: int | None, label: str) -> str:
        if self._account is None:
            raise SwapSubmissionFailedError(f"{label} requires a private key; the chain client is read-only")

        async with self._send_lock:
            try:
                if self._chain_id is None:
                    self._chain_id = int(await self._w3.eth.chain_id)
                nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
                tx_params: dict[str, Any] = {
                    "from": self._account.address,
                    "nonce": nonce,
                    "chainId": self._chain_id,
                }
                if gas_limit is not None:
                    tx_params["gas"] = int(gas_limit)
                tx = await call.build_transaction(tx_params)
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                raise SwapSubmissionFailedError(f"{label} submission failed: {error}") from error

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        log_event(
            self._logger,
            level="debug",
            event="chain_tx_submitted",
            message="Transaction submitted",
            label=label,
            tx_hash=tx_hash_hex,
            nonce=nonce,
        )
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, *, timeout_seconds: float) -> TxReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            raise SwapNotConfirmedError(f"No receipt for {tx_hash}: {error}", tx_hash=tx_hash) from error

        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 0)),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def close(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is None:
            return
        await guarded_call(
            disconnect,
            logger=self._logger,
            event="chain_client_close_failed",
            message="Failed to close chain RPC provider",
            level="debug",
        )


class DryRunChainClient:
    """Reads go to the real chain, writes are simulated.

    Approvals and swaps return synthetic transaction hashes whose receipts
    always report success, so the whole pipeline can run without funds.
    """

    def __init__(self, *, logger: logging.Logger, delegate: ChainClient) -> None:
        self._logger = logger
        self._delegate = delegate
        self._sequence = 0
        self._simulated: set[str] = set()
        self._allowances: dict[tuple[str, str], int] = {}

    @property
    def account_address(self) -> str:
        return self._delegate.account_address

    async def healthcheck(self) -> None:
        await self._delegate.healthcheck()

    async def quote_v3_exact_input_single(self, **kwargs: Any) -> tuple[int, int | None]:
        return await self._delegate.quote_v3_exact_input_single(**kwargs)

    async def quote_v3_legacy_exact_input_single(self, **kwargs: Any) -> int:
        return await self._delegate.quote_v3_legacy_exact_input_single(**kwargs)

    async def quote_v2_amounts_out(self, *, router: str, amount_in: int, path: Sequence[str]) -> list[int]:
        return await self._delegate.quote_v2_amounts_out(router=router, amount_in=amount_in, path=path)

    async def get_allowance(self, *, token: str, owner: str, spender: str) -> int:
        simulated = self._allowances.get((normalize_address(token), normalize_address(spender)), 0)
        if simulated > 0:
            return simulated
        return await self._delegate.get_allowance(token=token, owner=owner, spender=spender)

    def _synthetic_hash(self, label: str, payload: dict[str, Any]) -> str:
        self._sequence += 1
        seed = f"{label}:{self._sequence}:{sorted(payload.items())}".encode()
        tx_hash = "0x" + hashlib.sha256(seed).hexdigest()
        self._simulated.add(tx_hash)
        log_event(
            self._logger,
            level="info",
            event="dry_run_tx_simulated",
            message="Dry-run transaction simulated",
            label=label,
            tx_hash=tx_hash,
            **{key: str(value) for key, value in payload.items()},
        )
        return tx_hash

    async def approve(self, *, token: str, spender: str, amount: int) -> str:
        self._allowances[(normalize_address(token), normalize_address(spender))] = int(amount)
        return self._synthetic_hash("approve", {"token": token, "spender": spender})

    async def swap_v3_exact_input_single(self, **kwargs: Any) -> str:
        return self._synthetic_hash(
            "exact_input_single",
            {
                "router": kwargs.get("router"),
                "token_in": kwargs.get("token_in"),
                "token_out": kwargs.get("token_out"),
                "amount_in": kwargs.get("amount_in"),
                "amount_out_minimum": kwargs.get("amount_out_minimum"),
            },
        )

    async def swap_v2_exact_tokens_for_tokens(self, **kwargs: Any) -> str:
        return self._synthetic_hash(
            "swap_exact_tokens_for_tokens",
            {
                "router": kwargs.get("router"),
                "path": "->".join(kwargs.get("path") or ()),
                "amount_in": kwargs.get("amount_in"),
                "amount_out_min": kwargs.get("amount_out_min"),
            },
        )

    async def wait_for_receipt(self, tx_hash: str, *, timeout_seconds: float) -> TxReceipt:
        if tx_hash in self._simulated:
            return TxReceipt(tx_hash=tx_hash, status=1)
        return await self._delegate.wait_for_receipt(tx_hash, timeout_seconds=timeout_seconds)

    async def close(self) -> None:
        await self._delegate.close()
