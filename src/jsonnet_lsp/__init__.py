"""jsonnet-lsp: a language server for Jsonnet.

Publishes syntax diagnostics for open documents over the Language Server
Protocol. Entry points:
    jsonnet-lsp                 # stdio server
    jsonnet-lsp check FILE...   # diagnostics on the command line
"""

__version__ = "0.1.0"
