from .http_client import JanusClient, RpcError
from .http_server import JanusRPCServer

__all__ = ["JanusClient", "JanusRPCServer", "RpcError"]
