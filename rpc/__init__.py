"""RPC module for interacting with the Zcash node and the Solana cluster"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import backoff
import requests

logger = logging.getLogger(__name__)

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class TransientRPCError(RPCError):
    """Node unreachable or timed out; nothing was mutated, retry on the next cycle"""
    pass

class NodeConnectionError(TransientRPCError):
    """Raised when connection to node fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class NodeError(RPCError):
    """Error object returned by the node itself"""
    ERROR_MESSAGES: Dict[int, str] = {}

    def __init__(self, message: str, code: int, method: str):
        self.code = code
        self.method = method
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class ZcashError(NodeError):
    """Zcash-specific error codes and messages

    Common error codes:
    -1  - General error during processing
    -4  - Wallet error
    -5  - Invalid address or key
    -6  - Insufficient funds
    -8  - Invalid parameter
    -25 - Error processing transaction
    -26 - Transaction rejected by network rules
    -28 - Node is still warming up
    """
    ERROR_MESSAGES = {
        -1: "General error during processing",
        -4: "Wallet error",
        -5: "Invalid address or key",
        -6: "Insufficient funds",
        -8: "Invalid parameter",
        -25: "Error processing transaction",
        -26: "Transaction rejected by network rules",
        -28: "Node is still warming up",
    }

class SolanaError(NodeError):
    """Solana JSON-RPC error codes and messages"""
    ERROR_MESSAGES = {
        -32002: "Transaction simulation failed",
        -32003: "Transaction signature verification failure",
        -32004: "Block not available for slot",
        -32005: "Node is unhealthy",
        -32007: "Slot was skipped or is missing",
        -32009: "Slot skipped or missing in long-term storage",
        -32602: "Invalid params",
    }

class RPCMethod:
    """Descriptor class for RPC methods

    Calls are blocking HTTP requests, so they are executed in a worker thread
    and awaited. Read-only methods are retried with exponential backoff on
    connection errors; methods that submit transactions are never retried here.
    """
    def __init__(self, method_name: str, retry: bool = True):
        self.method_name = method_name
        self.retry = retry

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        async def caller(*args) -> Any:
            call = obj._call_with_retry if self.retry else obj._call_method
            return await asyncio.to_thread(call, self.method_name, *args)

        caller.__name__ = self.method_name
        return caller

class JSONRPCClient:
    """Blocking JSON-RPC client over a shared requests session"""

    jsonrpc_version = "2.0"
    error_class = NodeError
    timeout = 30

    def __init__(self, url: str, auth: Optional[Tuple[str, str]] = None, timeout: Optional[int] = None):
        self.url = url
        if timeout is not None:
            self.timeout = timeout

        self.session = requests.Session()
        if auth:
            self.session.auth = auth
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from node

        Raises:
            NodeConnectionError: Connection to node failed
            NodeAuthError: Authentication failed
            NodeError: Node returned an error object
        """
        payload = {
            "jsonrpc": self.jsonrpc_version,
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        result = None
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            if response.status_code == 401:
                raise NodeAuthError("Authentication failed - check rpcuser/rpcpassword", method=method)

            # Try to parse response even if status code is error
            result = response.json()

            if 'error' in result and result['error'] is not None:
                error = result['error']
                raise self.error_class(
                    error.get('message', 'Unknown error'),
                    error.get('code', -1),
                    method
                )

            # Now check for HTTP errors after we've tried to parse potential error response
            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to node at {self.url}", method=method
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}", method=method
            ) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}", method=method
            ) from e

    @backoff.on_exception(backoff.expo, NodeConnectionError, max_tries=3, max_time=30)
    def _call_with_retry(self, method: str, *args) -> Any:
        return self._call_method(method, *args)

class ZcashRPC(JSONRPCClient):
    """zcashd JSON-RPC client"""

    jsonrpc_version = "1.0"
    error_class = ZcashError

    def __init__(self, url: str, user: str, password: str, timeout: Optional[int] = None):
        super().__init__(url, auth=(user, password), timeout=timeout)

    # Blockchain methods
    getblockchaininfo = RPCMethod('getblockchaininfo')
    getblockcount = RPCMethod('getblockcount')

    # Wallet methods
    gettransaction = RPCMethod('gettransaction')

    # Shielded methods
    z_getoperationresult = RPCMethod('z_getoperationresult', retry=False)
    z_listreceivedbyaddress = RPCMethod('z_listreceivedbyaddress')
    z_sendmany = RPCMethod('z_sendmany', retry=False)
    z_validateaddress = RPCMethod('z_validateaddress')

from .solana import SolanaRPC

# Export all clients and error types
__all__ = [
    # Error types
    'RPCError',
    'TransientRPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'NodeError',
    'ZcashError',
    'SolanaError',

    # Clients
    'RPCMethod',
    'JSONRPCClient',
    'ZcashRPC',
    'SolanaRPC',
]
