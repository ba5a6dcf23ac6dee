"""Solana JSON-RPC client"""
from typing import Optional

from . import JSONRPCClient, RPCMethod, SolanaError

class SolanaRPC(JSONRPCClient):
    """Solana cluster JSON-RPC client

    Only the methods the bridge needs are declared. Transactions are built and
    signed locally and submitted as base64 through ``sendTransaction``.
    """

    jsonrpc_version = "2.0"
    error_class = SolanaError

    def __init__(self, url: str, timeout: Optional[int] = None):
        super().__init__(url, timeout=timeout)

    # Cluster methods
    getVersion = RPCMethod('getVersion')
    getSlot = RPCMethod('getSlot')
    getLatestBlockhash = RPCMethod('getLatestBlockhash')

    # Account methods
    getAccountInfo = RPCMethod('getAccountInfo')
    getTokenAccountsByOwner = RPCMethod('getTokenAccountsByOwner')

    # Transaction methods
    getSignaturesForAddress = RPCMethod('getSignaturesForAddress')
    getSignatureStatuses = RPCMethod('getSignatureStatuses')
    getTransaction = RPCMethod('getTransaction')
    sendTransaction = RPCMethod('sendTransaction', retry=False)
