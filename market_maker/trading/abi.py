from __future__ import annotations

from typing import Any


def _param(name: str, abi_type: str) -> dict[str, Any]:
    return {"name": name, "type": abi_type}


def _tuple(name: str, components: list[dict[str, Any]]) -> dict[str, Any]:
    return {"name": name, "type": "tuple", "components": components}


ERC20_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [_param("owner", "address"), _param("spender", "address")],
        "outputs": [_param("", "uint256")],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [_param("spender", "address"), _param("amount", "uint256")],
        "outputs": [_param("", "bool")],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [_param("account", "address")],
        "outputs": [_param("", "uint256")],
    },
]

# QuoterV2 takes a struct and reports gas alongside the output amount.
QUOTER_V2_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "quoteExactInputSingle",
        "stateMutability": "nonpayable",
        "inputs": [
            _tuple(
                "params",
                [
                    _param("tokenIn", "address"),
                    _param("tokenOut", "address"),
                    _param("amountIn", "uint256"),
                    _param("fee", "uint24"),
                    _param("sqrtPriceLimitX96", "uint160"),
                ],
            )
        ],
        "outputs": [
            _param("amountOut", "uint256"),
            _param("sqrtPriceX96After", "uint160"),
            _param("initializedTicksCrossed", "uint32"),
            _param("gasEstimate", "uint256"),
        ],
    }
]

QUOTER_V1_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "quoteExactInputSingle",
        "stateMutability": "nonpayable",
        "inputs": [
            _param("tokenIn", "address"),
            _param("tokenOut", "address"),
            _param("fee", "uint24"),
            _param("amountIn", "uint256"),
            _param("sqrtPriceLimitX96", "uint160"),
        ],
        "outputs": [_param("amountOut", "uint256")],
    }
]

V3_SWAP_ROUTER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "exactInputSingle",
        "stateMutability": "payable",
        "inputs": [
            _tuple(
                "params",
                [
                    _param("tokenIn", "address"),
                    _param("tokenOut", "address"),
                    _param("fee", "uint24"),
                    _param("recipient", "address"),
                    _param("deadline", "uint256"),
                    _param("amountIn", "uint256"),
                    _param("amountOutMinimum", "uint256"),
                    _param("sqrtPriceLimitX96", "uint160"),
                ],
            )
        ],
        "outputs": [_param("amountOut", "uint256")],
    }
]

V2_ROUTER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getAmountsOut",
        "stateMutability": "view",
        "inputs": [_param("amountIn", "uint256"), _param("path", "address[]")],
        "outputs": [_param("amounts", "uint256[]")],
    },
    {
        "type": "function",
        "name": "swapExactTokensForTokens",
        "stateMutability": "nonpayable",
        "inputs": [
            _param("amountIn", "uint256"),
            _param("amountOutMin", "uint256"),
            _param("path", "address[]"),
            _param("to", "address"),
            _param("deadline", "uint256"),
        ],
        "outputs": [_param("amounts", "uint256[]")],
    },
]
