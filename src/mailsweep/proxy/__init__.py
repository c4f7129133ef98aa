from mailsweep.proxy.server import AIProxyServer, create_server, serve

__all__ = ["AIProxyServer", "create_server", "serve"]
