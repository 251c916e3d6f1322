"""
knowmem MCP adapter — FastMCP server and knowledge tools.

Requires the optional ``mcp`` extra: pip install knowmem[mcp]

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""
